"""Administrator registration, login and category management."""

from __future__ import annotations

import datetime as dt
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .. import schemas
from ..dependencies import get_coordinator, relay_errors
from ..models import AdminUser
from ..routing.coordinator import RelayCoordinator
from ..security.auth import get_db_session, require_admin
from ..security.passwords import hash_password, needs_rehash, verify_password
from ..security.tokens import create_admin_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


def _token_response(admin: AdminUser) -> schemas.AdminTokenResponse:
    token, expires_at = create_admin_token(str(admin.id), admin.email)
    return schemas.AdminTokenResponse(
        access_token=token,
        expires_at=expires_at,
        admin=schemas.AdminProfile(id=str(admin.id), email=admin.email, name=admin.name),
    )


@router.post(
    "/register",
    response_model=schemas.AdminTokenResponse,
    status_code=status.HTTP_201_CREATED,
)
def register_admin(
    payload: schemas.AdminRegister,
    session: Session = Depends(get_db_session),
) -> schemas.AdminTokenResponse:
    """Create the first administrator; later registrations are refused."""
    existing = session.scalar(select(func.count()).select_from(AdminUser)) or 0
    if existing:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="An administrator already exists",
        )
    try:
        password_hash = hash_password(payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    admin = AdminUser(
        email=payload.email.strip().lower(),
        password_hash=password_hash,
        name=payload.name,
    )
    session.add(admin)
    session.commit()
    logger.info("Registered administrator %s", admin.email)
    return _token_response(admin)


@router.post("/login", response_model=schemas.AdminTokenResponse)
def login_admin(
    payload: schemas.AdminCredentials,
    session: Session = Depends(get_db_session),
) -> schemas.AdminTokenResponse:
    email = payload.email.strip().lower()
    admin = session.execute(
        select(AdminUser).where(AdminUser.email == email)
    ).scalar_one_or_none()
    if admin is None or not verify_password(payload.password, admin.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials"
        )
    if needs_rehash(admin.password_hash):
        admin.password_hash = hash_password(payload.password)
    admin.last_login_at = dt.datetime.now(dt.timezone.utc)
    session.commit()
    return _token_response(admin)


@router.post(
    "/categories",
    response_model=schemas.Category,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_category(
    payload: schemas.CategoryCreate,
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.Category:
    with relay_errors():
        return await coordinator.store.create_category(payload)


@router.get(
    "/categories",
    response_model=schemas.CategoryList,
    dependencies=[Depends(require_admin)],
)
async def list_all_categories(
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.CategoryList:
    with relay_errors():
        categories = await coordinator.store.list_categories(active_only=False)
    return schemas.CategoryList(categories=categories)
