"""Pydantic models for log entries and the session views served to the UI."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Generic, Literal, Optional, TypeVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from session_monitor.date_utils import parse_timestamp

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    data: T


# ── Log entry models ────────────────────────────────────────────────

class TextBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str = ""


class ThinkingBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["thinking"] = "thinking"
    thinking: str = ""


class ToolUseBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: Any = None
    is_error: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]

_CONTENT_BLOCK_ADAPTER: TypeAdapter = TypeAdapter(ContentBlock)


class MessagePayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    role: str = ""
    content: tuple[ContentBlock, ...] = ()

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> tuple:
        # Plain-string content is how the CLI records typed prompts.
        if isinstance(value, str):
            return (TextBlock(text=value),) if value else ()
        if not isinstance(value, (list, tuple)):
            return ()
        blocks = []
        for raw in value:
            if isinstance(raw, BaseModel):
                blocks.append(raw)
                continue
            try:
                blocks.append(_CONTENT_BLOCK_ADAPTER.validate_python(raw))
            except ValidationError:
                # Images, documents and other block types carry no status signal.
                continue
        return tuple(blocks)


class LogEntry(BaseModel):
    """One parsed line of a session's JSONL activity log."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    entry_type: str = Field(alias="type")
    session_id: str = Field(default="", alias="sessionId")
    timestamp: datetime
    entry_id: Optional[str] = Field(default=None, alias="uuid")
    parent_id: Optional[str] = Field(default=None, alias="parentUuid")
    message: Optional[MessagePayload] = None
    cwd: Optional[str] = None
    git_branch: Optional[str] = Field(default=None, alias="gitBranch")
    slug: Optional[str] = None
    version: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> datetime:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError("timestamp is not an absolute instant")
        return parsed

    @field_validator("message", mode="before")
    @classmethod
    def _drop_non_object_message(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, MessagePayload)) else None

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        return self.message.content if self.message else ()

    def is_message(self, *roles: str) -> bool:
        """True when the entry carries a message and is one of ``roles``."""
        return self.message is not None and self.entry_type in roles


# ── Session models ──────────────────────────────────────────────────

class SessionStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    WAITING = "waiting"
    NEEDS_APPROVAL = "needs_approval"


class Session(BaseModel):
    id: str
    root_path: str
    display_name: str
    started_at: datetime
    last_activity_at: datetime
    branch: Optional[str] = None
    slug: Optional[str] = None
    message_count: int = 0
    tool_invocation_count: int = 0
    status: SessionStatus = SessionStatus.IDLE
    has_pending_tool_use: bool = False
    first_prompt: Optional[str] = None
    last_output: Optional[str] = None
    log_file_path: str
    log_file_size_bytes: int = 0


class ToolCall(BaseModel):
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    result: Optional[str] = None


class ParsedMessage(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    timestamp: datetime
    content: str = ""
    thinking: Optional[str] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


class SessionDetail(Session):
    messages: list[ParsedMessage] = Field(default_factory=list)


# ── Project + aggregate models ──────────────────────────────────────

class ProjectGroup(BaseModel):
    folder: str
    path: str
    name: str


class SessionSummaryStats(BaseModel):
    total_projects: int = 0
    total_sessions: int = 0
    working_sessions: int = 0
    waiting_sessions: int = 0
    idle_sessions: int = 0
    total_messages: int = 0
    total_tool_invocations: int = 0


# ── Live update models ──────────────────────────────────────────────

class ChangeKind(str, Enum):
    NEW_SESSION = "new_session"
    UPDATE = "update"


class ChangeEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    affected_path: str
