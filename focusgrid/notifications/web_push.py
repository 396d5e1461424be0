"""Push transport (Web Push with VAPID)."""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional
import requests
from dotenv import load_dotenv
from pywebpush import webpush, WebPushException

from focusgrid.models.constants import GONE_STATUS_CODES
from focusgrid.models.push import PushEndpoint, PushPayload

load_dotenv()

logger = logging.getLogger(__name__)


class PushDeliveryError(Exception):
    """A push message was not accepted by the push service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_gone(self) -> bool:
        """True when the endpoint no longer exists and should be removed."""
        return self.status_code in GONE_STATUS_CODES


class PushTransport(ABC):
    """Delivers one payload to one endpoint."""

    @abstractmethod
    def send(self, endpoint: PushEndpoint, payload: PushPayload) -> None:
        """Deliver `payload`.

        Raises:
            PushDeliveryError: If the push service rejected the message
        """


class WebPushTransport(PushTransport):
    """Web Push transport signing requests with VAPID keys."""

    def __init__(
        self,
        vapid_subject: Optional[str] = None,
        vapid_public_key: Optional[str] = None,
        vapid_private_key: Optional[str] = None,
        timeout: float = 10,
    ):
        """Initialize the transport.

        Args:
            vapid_subject: mailto: or https: contact. If None, reads VAPID_SUBJECT env var.
            vapid_public_key: Application server key shared with clients. If None, reads VAPID_PUBLIC_KEY.
            vapid_private_key: Signing key. If None, reads VAPID_PRIVATE_KEY.
            timeout: Request timeout in seconds
        """
        self.vapid_subject = vapid_subject or os.getenv("VAPID_SUBJECT")
        self.vapid_public_key = vapid_public_key or os.getenv("VAPID_PUBLIC_KEY")
        self.vapid_private_key = vapid_private_key or os.getenv("VAPID_PRIVATE_KEY")
        self.timeout = timeout

        missing = [
            name
            for name, value in (
                ("VAPID_SUBJECT", self.vapid_subject),
                ("VAPID_PUBLIC_KEY", self.vapid_public_key),
                ("VAPID_PRIVATE_KEY", self.vapid_private_key),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing Web Push configuration: {', '.join(missing)}")

    def send(self, endpoint: PushEndpoint, payload: PushPayload) -> None:
        subscription_info = {
            "endpoint": endpoint.endpoint,
            "keys": {"p256dh": endpoint.p256dh, "auth": endpoint.auth},
        }
        try:
            webpush(
                subscription_info=subscription_info,
                data=json.dumps(payload.model_dump()),
                vapid_private_key=self.vapid_private_key,
                vapid_claims={"sub": self.vapid_subject},
                timeout=self.timeout,
            )
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            raise PushDeliveryError(f"Push to endpoint {endpoint.id} failed: {e}", status_code=status_code) from e
        except requests.RequestException as e:
            raise PushDeliveryError(f"Push to endpoint {endpoint.id} failed: {e}") from e
        logger.debug(f"Pushed '{payload.tag}' to endpoint {endpoint.id}")
