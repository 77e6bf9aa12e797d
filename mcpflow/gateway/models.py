"""
Gateway data models.
"""

from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class ProxyEnvelope(BaseModel):
    """Caller-supplied description of one proxied call."""

    service: Optional[str] = None
    path: Optional[str] = None
    method: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None
    credential_id: Optional[str] = Field(default=None, alias="apiKeyId")

    class Config:
        populate_by_name = True

    REQUIRED: ClassVar[Tuple[Tuple[str, str], ...]] = (
        ("service", "service"),
        ("path", "path"),
        ("method", "method"),
        ("credential_id", "apiKeyId"),
    )

    @field_validator("headers", mode="before")
    @classmethod
    def _headers_default(cls, v: Any) -> Any:
        return {} if v is None else v

    def missing_fields(self) -> List[str]:
        return [
            wire
            for attr, wire in self.REQUIRED
            if not (getattr(self, attr) or "").strip()
        ]


class OutboundRequest(BaseModel):
    url: str
    method: str
    headers: Dict[str, str] = Field(default_factory=dict)
    content: Optional[bytes] = None


class UpstreamResult(BaseModel):
    status_code: int
    headers: Dict[str, str] = Field(default_factory=dict)
    data: Any = None
    duration_ms: float


class ProxyResponse(BaseModel):
    """Envelope returned to the caller on the pass-through path."""

    status: int
    headers: Dict[str, str] = Field(default_factory=dict)
    data: Any = None


class UsageRecord(BaseModel):
    principal_id: str
    credential_id: str
    service_name: str
    path: str
    method: str
    status_code: Optional[int] = None
    duration_ms: float = 0.0
    request_headers: Dict[str, str] = Field(default_factory=dict)
    response_headers: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
