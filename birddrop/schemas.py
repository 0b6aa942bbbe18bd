"""
Pydantic models for inbound signaling frames.

Every frame is validated against one of these before any table is touched.
Field names follow the wire protocol's camelCase through aliases.

Depends on: config
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from birddrop.config import MAX_HINT_LENGTH, MAX_ID_LENGTH


class InboundMessage(BaseModel):
    """Envelope every frame must satisfy: a JSON object with a string `type`."""
    model_config = ConfigDict(strict=True, extra="ignore", populate_by_name=True)
    type: str


class JoinMessage(InboundMessage):
    session_id: str = Field(..., alias="sessionId", min_length=1, max_length=MAX_ID_LENGTH)


class GeoJoinMessage(InboundMessage):
    lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    lon: float = Field(..., ge=-180, le=180, allow_inf_nan=False)
    user_id: str = Field(..., alias="userId", min_length=1, max_length=MAX_ID_LENGTH)
    hint: Optional[str] = Field(default=None, max_length=MAX_HINT_LENGTH)

    @field_validator("lat", "lon", mode="before")
    @classmethod
    def coordinate_is_number(cls, v: Any) -> float:
        # JSON integers are fine; strings and booleans are not.
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("coordinate must be a number")
        return float(v)


class GeoRequestMessage(InboundMessage):
    from_id: str = Field(..., alias="fromId", min_length=1, max_length=MAX_ID_LENGTH)
    to_id: str = Field(..., alias="toId", min_length=1, max_length=MAX_ID_LENGTH)


class GeoApproveMessage(GeoRequestMessage):
    approved: bool


class SignalMessage(InboundMessage):
    """SDP/ICE payloads are opaque; only their presence is checked."""
    payload: Any

    @field_validator("payload")
    @classmethod
    def payload_present(cls, v: Any) -> Any:
        if v is None or v == "":
            raise ValueError("payload is required")
        return v


MESSAGE_SCHEMAS: dict[str, type[InboundMessage]] = {
    "join": JoinMessage,
    "geo-join": GeoJoinMessage,
    "geo-request": GeoRequestMessage,
    "geo-approve": GeoApproveMessage,
    "signal": SignalMessage,
}
