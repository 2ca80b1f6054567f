"""Agent management API router (administrators only)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from .. import schemas
from ..dependencies import get_coordinator, relay_errors
from ..routing.coordinator import RelayCoordinator
from ..security.auth import require_admin

router = APIRouter(
    prefix="/api/v1/agents",
    tags=["agents"],
    dependencies=[Depends(require_admin)],
)


@router.get("", response_model=schemas.AgentList)
async def list_agents(
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.AgentList:
    with relay_errors():
        agents = await coordinator.store.list_agents()
    return schemas.AgentList(agents=agents)


@router.post("", response_model=schemas.AgentEnvelope, status_code=status.HTTP_201_CREATED)
async def create_agent(
    payload: schemas.AgentCreate,
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.AgentEnvelope:
    with relay_errors():
        agent = await coordinator.register_agent(payload)
    return schemas.AgentEnvelope(agent=agent)


@router.get("/workload", response_model=schemas.WorkloadList)
async def agent_workload(
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.WorkloadList:
    """Handled-thread counters next to the live count of open threads."""
    with relay_errors():
        rows = await coordinator.store.agent_workload()
    return schemas.WorkloadList(agents=rows)


@router.post("/{agent_id}/toggle", response_model=schemas.AgentEnvelope)
async def toggle_agent(
    agent_id: str,
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.AgentEnvelope:
    with relay_errors():
        agent = await coordinator.toggle_agent(agent_id)
    return schemas.AgentEnvelope(agent=agent)


@router.post("/threads/{thread_id}/reassign", response_model=schemas.ReassignResponse)
async def reassign_thread(
    thread_id: str,
    coordinator: RelayCoordinator = Depends(get_coordinator),
) -> schemas.ReassignResponse:
    with relay_errors():
        result = await coordinator.reassign_thread(thread_id)
    return schemas.ReassignResponse(
        thread_id=result.thread.id, agent_status=result.status, agent=result.agent
    )
