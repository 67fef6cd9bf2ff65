# dispatch.py — Notification dispatchers
# Every send returns a DeliveryResult instead of raising, so callers can
# fan out to several recipients and report failures as data.
#
# Channels:
#   in-app  → Notification rows (always on)
#   email   → outbound relay at NOTIFY_GATEWAY_URL
#   sms     → same relay, only for verified mobile numbers

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

import config
from errors import UpstreamError
from models import Notification, new_uuid
from store import UserContact
from templates import render

logger = logging.getLogger("residency-desk.dispatch")

IN_APP = "in-app"
EMAIL = "email"
SMS = "sms"


@dataclass(frozen=True)
class DeliveryResult:
    recipient_id: str
    channel: str
    template: str
    success: bool
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient_id": self.recipient_id,
            "channel": self.channel,
            "template": self.template,
            "success": self.success,
            "error": self.error,
            "skipped": self.skipped,
        }


class NotificationDispatcher(Protocol):
    channels: Sequence[str]

    async def send(self, channel: str, recipient: UserContact, template: str, data: Dict[str, Any]) -> DeliveryResult: ...


class InAppDispatcher:
    """Persists notifications for the in-app inbox."""

    channels = (IN_APP,)

    def __init__(self, db: AsyncSession):
        self.db = db

    async def send(self, channel: str, recipient: UserContact, template: str, data: Dict[str, Any]) -> DeliveryResult:
        try:
            message = render(template, data)
        except (KeyError, ValueError) as e:
            return DeliveryResult(recipient.id, channel, template, False, f"Cannot render {template}: {e}")

        notification = Notification(
            id=new_uuid(),
            user_id=recipient.id,
            title=message.title,
            body=message.body,
            template=template,
            priority=message.priority,
            channels=[IN_APP],
            payload={k: v for k, v in data.items() if isinstance(v, (str, int, float, bool, type(None)))},
        )
        try:
            self.db.add(notification)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"In-app notification to {recipient.id} failed: {e}")
            return DeliveryResult(recipient.id, channel, template, False, str(e)[:200])
        return DeliveryResult(recipient.id, channel, template, True)


class GatewayDispatcher:
    """Posts email/SMS messages to the outbound relay."""

    channels = (EMAIL, SMS)

    def __init__(
        self,
        url: str = config.NOTIFY_GATEWAY_URL,
        token: str = config.NOTIFY_GATEWAY_TOKEN,
        timeout: float = config.NOTIFY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _address(self, channel: str, recipient: UserContact) -> Optional[str]:
        if channel == EMAIL:
            return recipient.email or None
        if channel == SMS and recipient.is_mobile_verified:
            return recipient.phone_number or None
        return None

    async def send(self, channel: str, recipient: UserContact, template: str, data: Dict[str, Any]) -> DeliveryResult:
        address = self._address(channel, recipient)
        if not address:
            return DeliveryResult(recipient.id, channel, template, False, "No contact for channel", skipped=True)
        try:
            message = render(template, data)
        except (KeyError, ValueError) as e:
            return DeliveryResult(recipient.id, channel, template, False, f"Cannot render {template}: {e}")

        payload = {
            "channel": channel,
            "to": address,
            "from": config.NOTIFY_FROM,
            "subject": message.title,
            "text": message.body,
            "template": template,
        }
        try:
            await self.post(payload)
        except UpstreamError as e:
            logger.warning(f"{channel} notification '{template}' to {recipient.id} failed: {e}")
            return DeliveryResult(recipient.id, channel, template, False, str(e)[:200])
        return DeliveryResult(recipient.id, channel, template, True)

    async def post(self, payload: Dict[str, Any]) -> None:
        """Hand one message to the relay. Raises UpstreamError on any failure."""
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamError(f"Notification relay error: {e}", service="notify-gateway") from e


class FanOutDispatcher:
    """Routes each send to the dispatcher that owns the channel."""

    def __init__(self, *dispatchers):
        self._routes: Dict[str, Any] = {}
        for dispatcher in dispatchers:
            for channel in dispatcher.channels:
                self._routes.setdefault(channel, dispatcher)
        self.channels = tuple(self._routes)

    async def send(self, channel: str, recipient: UserContact, template: str, data: Dict[str, Any]) -> DeliveryResult:
        dispatcher = self._routes.get(channel)
        if dispatcher is None:
            return DeliveryResult(recipient.id, channel, template, False, "Channel not configured")
        try:
            return await dispatcher.send(channel, recipient, template, data)
        except Exception as e:
            logger.warning(f"Dispatcher for {channel} raised: {e}", exc_info=True)
            return DeliveryResult(recipient.id, channel, template, False, str(e)[:200])


def build_dispatcher(db: AsyncSession, transport: Optional[httpx.AsyncBaseTransport] = None) -> FanOutDispatcher:
    """In-app always; email/SMS only when a relay URL is configured."""
    dispatchers = [InAppDispatcher(db)]
    if config.NOTIFY_GATEWAY_URL:
        dispatchers.append(GatewayDispatcher(transport=transport))
    return FanOutDispatcher(*dispatchers)
