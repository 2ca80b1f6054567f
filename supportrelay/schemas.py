"""Pydantic schemas for relay records and the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ThreadStatus = Literal["open", "closed"]
SenderType = Literal["customer", "agent", "system"]
MediaType = Literal["image", "video", "voice", "document"]


class Customer(BaseModel):
    id: str
    username: str | None = None
    full_name: str | None = None
    email: str | None = None
    site_origin: str = ""
    device_hash: str = ""
    external_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    last_seen_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or "Unknown"


class Category(BaseModel):
    id: str
    title: str
    description: str | None = None
    is_active: bool = True
    sort_order: int = 0


class Agent(BaseModel):
    id: str
    channel_user_id: str
    name: str
    email: str | None = None
    is_online: bool = False
    handled_threads: int = 0
    avg_response_time_ms: int | None = None
    created_at: datetime


class Thread(BaseModel):
    id: str
    customer_id: str
    category_id: str
    assigned_agent_id: str | None = None
    status: ThreadStatus = "open"
    channel: str = "website"
    created_at: datetime
    updated_at: datetime


class Message(BaseModel):
    id: str
    thread_id: str
    sender_type: SenderType
    sender_id: str | None = None
    content: str | None = None
    media_url: str | None = None
    media_type: str | None = None
    created_at: datetime


class AgentWorkload(BaseModel):
    id: str
    name: str
    is_online: bool
    total_handled: int
    active_threads: int


# ---------------------------------------------------------------------------
# API payloads


class CustomerProfile(BaseModel):
    """Profile supplied by a host site that knows its signed-in user."""

    id: str | None = None
    external_id: str | None = None
    name: str | None = None
    full_name: str | None = None
    email: str | None = None
    metadata: dict[str, Any] | None = None


class StartChatRequest(BaseModel):
    category_id: str | None = None
    username: str | None = None
    site_origin: str = ""
    device_hash: str = ""
    user: CustomerProfile | None = None


class StartChatResponse(BaseModel):
    thread_id: str
    ws_token: str
    agent_status: Literal["assigned", "no_agents"]
    message: str


class SendMessageRequest(BaseModel):
    content: str | None = Field(default=None, max_length=5000)
    media_url: str | None = None
    media_type: MediaType | None = None
    sender_id: str | None = None


class MessageEnvelope(BaseModel):
    message: Message


class MessageList(BaseModel):
    messages: list[Message]


class ThreadEnvelope(BaseModel):
    thread: Thread


class CloseThreadResponse(BaseModel):
    success: bool = True
    thread: Thread


class AgentCreate(BaseModel):
    channel_user_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    email: str | None = None


class AgentList(BaseModel):
    agents: list[Agent]


class AgentEnvelope(BaseModel):
    agent: Agent


class WorkloadList(BaseModel):
    agents: list[AgentWorkload]


class ReassignResponse(BaseModel):
    thread_id: str
    agent_status: Literal["assigned", "no_agents"]
    agent: Agent | None = None


class CategoryCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    is_active: bool = True
    sort_order: int = 0


class CategoryList(BaseModel):
    categories: list[Category]


class AdminCredentials(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1, max_length=256)


class AdminRegister(AdminCredentials):
    name: str | None = Field(default=None, max_length=255)


class AdminProfile(BaseModel):
    id: str
    email: str
    name: str | None = None


class AdminTokenResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_at: datetime
    admin: AdminProfile


__all__ = [
    "AdminCredentials",
    "AdminProfile",
    "AdminRegister",
    "AdminTokenResponse",
    "Agent",
    "AgentCreate",
    "AgentEnvelope",
    "AgentList",
    "AgentWorkload",
    "Category",
    "CategoryCreate",
    "CategoryList",
    "CloseThreadResponse",
    "Customer",
    "CustomerProfile",
    "Message",
    "MessageEnvelope",
    "MessageList",
    "ReassignResponse",
    "SendMessageRequest",
    "StartChatRequest",
    "StartChatResponse",
    "Thread",
    "ThreadEnvelope",
    "WorkloadList",
]
