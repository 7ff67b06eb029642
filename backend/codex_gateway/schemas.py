from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from codex_gateway import __version__


class ChatRequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    image_paths: List[str] = Field(default_factory=list, alias="imagePaths")
    # accepted for compatibility; the gateway is always read-only
    approval_mode: Optional[str] = Field(default=None, alias="approvalMode")


class ChatResponseBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    messages: List[Dict[str, Any]]
    status: Literal["completed", "error"]
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__


class Message(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str
