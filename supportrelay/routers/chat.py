"""Widget-facing chat routes."""

from fastapi import APIRouter, Depends, Query, Request, status

from .. import schemas
from ..dependencies import get_coordinator, relay_errors
from ..rate_limit import chat_rate_limit, limiter
from ..routing.coordinator import RelayCoordinator
from ..routing.models import CustomerIdentity
from ..security.auth import require_thread_access
from ..security.tokens import ChatTokenClaims, create_chat_token

router = APIRouter(prefix="/api/v1", tags=["chat"])


def _identity(payload: schemas.StartChatRequest) -> CustomerIdentity:
    profile = payload.user
    if profile is None:
        return CustomerIdentity(
            username=payload.username,
            site_origin=payload.site_origin,
            device_hash=payload.device_hash,
        )
    return CustomerIdentity(
        username=payload.username,
        site_origin=payload.site_origin,
        device_hash=payload.device_hash,
        external_id=profile.id or profile.external_id,
        full_name=profile.name or profile.full_name,
        email=profile.email,
        metadata=profile.metadata,
    )


@router.get("/categories", response_model=schemas.CategoryList)
async def list_categories(
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.CategoryList:
    """Active categories the widget offers when a chat starts."""
    with relay_errors():
        categories = await coordinator.store.list_categories()
    return schemas.CategoryList(categories=categories)


@router.post(
    "/chat/start",
    response_model=schemas.StartChatResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(chat_rate_limit)
async def start_chat(
    request: Request,
    payload: schemas.StartChatRequest,
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.StartChatResponse:
    """Open (or resume) a thread and return the widget's socket token."""
    with relay_errors():
        result = await coordinator.start_thread(_identity(payload), payload.category_id)
    username = result.customer.username if result.customer else payload.username
    ws_token = create_chat_token(result.thread.customer_id, result.thread.id, username)
    return schemas.StartChatResponse(
        thread_id=result.thread.id,
        ws_token=ws_token,
        agent_status=result.status,
        message=result.message,
    )


@router.post(
    "/chat/{thread_id}/message",
    response_model=schemas.MessageEnvelope,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(chat_rate_limit)
async def send_message(
    request: Request,
    thread_id: str,
    payload: schemas.SendMessageRequest,
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.MessageEnvelope:
    with relay_errors():
        message = await coordinator.relay_customer_message(
            thread_id,
            content=payload.content,
            media_url=payload.media_url,
            media_type=payload.media_type,
            sender_id=payload.sender_id,
        )
    return schemas.MessageEnvelope(message=message)


@router.get("/chat/{thread_id}/messages", response_model=schemas.MessageList)
async def list_messages(
    thread_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    claims: ChatTokenClaims = Depends(require_thread_access),
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.MessageList:
    """History for a thread; the chat token must belong to that thread."""
    with relay_errors():
        messages = await coordinator.list_messages(thread_id, limit=limit, offset=offset)
    return schemas.MessageList(messages=messages)


@router.get("/chat/{thread_id}", response_model=schemas.ThreadEnvelope)
async def get_thread(
    thread_id: str,
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.ThreadEnvelope:
    with relay_errors():
        thread = await coordinator.get_thread(thread_id)
    return schemas.ThreadEnvelope(thread=thread)


@router.post("/chat/{thread_id}/close", response_model=schemas.CloseThreadResponse)
async def close_thread(
    thread_id: str,
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.CloseThreadResponse:
    with relay_errors():
        thread = await coordinator.close_thread(thread_id)
    return schemas.CloseThreadResponse(thread=thread)
