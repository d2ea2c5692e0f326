"""
Wire envelopes exchanged with the daemon.

Request (one JSON object per line):
    {"id": "<correlation id>", "action": "<name>", ...action-specific fields}

Reply (one JSON object per line):
    {"id": "<same id>", "success": true|false, "data": {...}, "error": "..."}

The data payload is action-dependent and is not validated here.
"""

import json
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agent_browser.errors import RemoteError


class Action(str, Enum):
    """Actions the CLI core issues itself."""

    PING = "ping"
    LAUNCH = "launch"
    CLOSE = "close"

    # Cloud (Browserbase) session queries, answered by the daemon
    REMOTE_LIST = "bb_session_list"
    REMOTE_GET = "bb_session_get"
    REMOTE_STOP = "bb_session_stop"
    REMOTE_DEBUG = "bb_session_debug"


def gen_id() -> str:
    """Generate a correlation id for one request."""
    return uuid4().hex


class Command(BaseModel):
    """Command envelope. Extra keyword arguments become action fields."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=gen_id)
    action: str

    @field_validator("action", mode="before")
    @classmethod
    def _action_name(cls, value: Any) -> str:
        if isinstance(value, Action):
            value = value.value
        if not isinstance(value, str) or not value:
            raise ValueError("action must be a non-empty string")
        return value

    def to_wire(self) -> bytes:
        """Serialize as one newline-terminated JSON message, null fields included."""
        return (json.dumps(self.model_dump()) + "\n").encode("utf-8")


class Response(BaseModel):
    """Response envelope."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _failure_has_error(self) -> "Response":
        # success=false always carries a message
        if not self.success and not self.error:
            self.error = "Unknown error"
        return self

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, id: Optional[str] = None) -> "Response":
        return cls(id=id, success=True, data=data if data is not None else {})

    @classmethod
    def fail(cls, error: str, id: Optional[str] = None) -> "Response":
        return cls(id=id, success=False, error=error)

    def raise_for_error(self) -> "Response":
        """Raise RemoteError if the reply reports failure."""
        if not self.success:
            raise RemoteError(self.error or "Unknown error")
        return self

    def to_wire(self) -> bytes:
        return (json.dumps(self.model_dump(exclude_none=True)) + "\n").encode("utf-8")
