"""Tests for notification dispatchers and templates."""
import json

import httpx
import pytest
from sqlalchemy import select

from dispatch import EMAIL, IN_APP, SMS, FanOutDispatcher, GatewayDispatcher, InAppDispatcher
from errors import UpstreamError
from models import Notification, NotificationPriority
from store import UserContact
from templates import render

RESIDENT = UserContact(id="u-1", name="Asha", email="asha@residency.test", role="resident")
VERIFIED = UserContact(
    id="u-2", name="Meera", email="meera@residency.test", role="committee",
    phone_number="+919800000001", is_mobile_verified=True,
)

DATA = {"title": "Leaking tap", "category": "water", "priority": "high", "assigned_by_name": "Meera"}


def test_render_fills_missing_keys_with_blanks():
    message = render("assignment_rejected", {"title": "Leaking tap"})
    assert message.title == "Assignment Rejected: Leaking tap"
    assert message.body == " rejected the assignment: "
    assert message.priority == NotificationPriority.HIGH


def test_render_unknown_template():
    with pytest.raises(KeyError):
        render("nope", {})


@pytest.mark.asyncio
async def test_in_app_writes_notification(db_session, resident):
    recipient = UserContact.from_model(resident)
    result = await InAppDispatcher(db_session).send(IN_APP, recipient, "assignment_created", DATA)
    assert result.success

    notif = (await db_session.execute(select(Notification))).scalar_one()
    assert notif.user_id == resident.id
    assert notif.template == "assignment_created"
    assert notif.title == "New Assignment: Leaking tap"
    assert notif.priority == NotificationPriority.HIGH
    assert notif.payload["category"] == "water"


@pytest.mark.asyncio
async def test_gateway_posts_email():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer relay-token"
        return httpx.Response(202, json={"queued": True})

    gateway = GatewayDispatcher(
        url="https://relay.test/send", token="relay-token", transport=httpx.MockTransport(handler),
    )
    result = await gateway.send(EMAIL, RESIDENT, "assignment_created", DATA)
    assert result.success
    assert seen[0]["to"] == "asha@residency.test"
    assert seen[0]["subject"] == "New Assignment: Leaking tap"


@pytest.mark.asyncio
async def test_gateway_sms_needs_verified_mobile():
    calls = []
    transport = httpx.MockTransport(lambda request: calls.append(request) or httpx.Response(200))
    gateway = GatewayDispatcher(url="https://relay.test/send", token="", transport=transport)

    skipped = await gateway.send(SMS, RESIDENT, "work_started", DATA)
    assert skipped.skipped and not skipped.success
    assert calls == []

    sent = await gateway.send(SMS, VERIFIED, "work_started", DATA)
    assert sent.success
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_gateway_failure_is_a_result():
    gateway = GatewayDispatcher(
        url="https://relay.test/send", token="",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    result = await gateway.send(EMAIL, RESIDENT, "issue_closed", DATA)
    assert result.success is False
    assert result.skipped is False
    assert "503" in result.error


@pytest.mark.asyncio
async def test_gateway_post_raises_upstream_error():
    gateway = GatewayDispatcher(
        url="https://relay.test/send", token="",
        transport=httpx.MockTransport(lambda request: httpx.Response(502)),
    )
    with pytest.raises(UpstreamError) as exc:
        await gateway.post({"channel": EMAIL, "to": "asha@residency.test"})
    assert exc.value.code == "RD-SYS-001"
    assert exc.value.context == {"service": "notify-gateway"}


def test_render_bad_format_value_raises_value_error():
    with pytest.raises(ValueError):
        render("recurring_problem_alert", {"category": "water"})


@pytest.mark.asyncio
async def test_unrenderable_data_is_a_failed_result(db_session, resident):
    recipient = UserContact.from_model(resident)
    result = await InAppDispatcher(db_session).send(IN_APP, recipient, "recurring_problem_alert", {"category": "water"})
    assert result.success is False
    assert result.error.startswith("Cannot render recurring_problem_alert")

    gateway = GatewayDispatcher(
        url="https://relay.test/send", token="",
        transport=httpx.MockTransport(lambda request: httpx.Response(200)),
    )
    result = await gateway.send(EMAIL, RESIDENT, "recurring_problem_alert", {"category": "water"})
    assert result.success is False
    assert (await db_session.execute(select(Notification))).scalars().all() == []


@pytest.mark.asyncio
async def test_fan_out_routes_and_contains_errors():
    class Exploding:
        channels = (SMS,)

        async def send(self, channel, recipient, template, data):
            raise RuntimeError("boom")

    ok_gateway = GatewayDispatcher(
        url="https://relay.test/send", token="",
        transport=httpx.MockTransport(lambda request: httpx.Response(200)),
    )
    ok_gateway.channels = (EMAIL,)
    fan_out = FanOutDispatcher(ok_gateway, Exploding())
    assert fan_out.channels == (EMAIL, SMS)

    assert (await fan_out.send(EMAIL, VERIFIED, "issue_closed", DATA)).success
    exploded = await fan_out.send(SMS, VERIFIED, "issue_closed", DATA)
    assert exploded.success is False
    assert exploded.error == "boom"
    missing = await fan_out.send("push", VERIFIED, "issue_closed", DATA)
    assert missing.error == "Channel not configured"
