"""Messages exchanged with the extension over the native messaging channel."""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class OutboundMessage(BaseModel):
    """A request forwarded from HTTP to the extension."""

    action: str
    params: Dict[str, List[str]] = Field(default_factory=dict)
    body: str = ""


class InboundMessage(BaseModel):
    """The extension's reply to a single OutboundMessage."""

    model_config = ConfigDict(populate_by_name=True)

    response_status_code: StrictInt = Field(alias="responseStatusCode", ge=0, le=65535)
    # Required, but JSON null is a valid value.
    data: Any
