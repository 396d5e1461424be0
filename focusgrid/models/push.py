"""Push endpoint and payload models for focusgrid."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from focusgrid.models.constants import PUSH_ICON_URL


class PushEndpoint(BaseModel):
    """A registered Web Push destination (one per subscribed device/browser)."""

    id: str = Field(..., description="Endpoint row identifier")
    user_id: str = Field(..., description="Owner of the endpoint")
    endpoint: str = Field(..., description="Push service URL")
    p256dh: str = Field(..., description="Client public key (delivery key 1)")
    auth: str = Field(..., description="Client auth secret (delivery key 2)")
    user_agent: Optional[str] = Field(None, description="Browser user agent at subscribe time")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PushPayload(BaseModel):
    """Body of a push message as rendered by the service worker.

    `tag` is stable per task so a repeated delivery replaces the notification
    already shown on the device.
    """

    title: str
    body: str
    url: str
    tag: Optional[str] = None
    icon: str = PUSH_ICON_URL
    badge: str = PUSH_ICON_URL
