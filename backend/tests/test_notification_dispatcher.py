"""
Tests for the notification dispatcher.

Validates:
- Phone normalization
- Per-recipient outcomes (SENT / FAILED transient / FAILED permanent)
- Bounded retries of transient failures only
- Batch abort when the gateway is unavailable
"""

import asyncio

import pytest

from db import crud
from errors import GatewayUnavailable, PermanentSendFailure, TransientSendFailure
from services.notification_dispatcher import NotificationDispatcher, normalize_phone


def _dispatcher(db, gateway, **kwargs) -> NotificationDispatcher:
    kwargs.setdefault("max_retries", 2)
    kwargs.setdefault("backoff_seconds", 0)
    kwargs.setdefault("timeout_seconds", 1)
    kwargs.setdefault("max_concurrency", 5)
    return NotificationDispatcher(db, gateway=gateway, **kwargs)


def _by_recipient(db, batch_id):
    return {a.recipient: a for a in crud.list_attempts(db, batch_id=batch_id)}


# ============================================================
# TESTS - NORMALIZATION
# ============================================================

class TestNormalizePhone:
    @pytest.mark.parametrize("raw,expected", [
        ("555-201-0001", "+15552010001"),
        ("(555) 201 0001", "+15552010001"),
        ("1 555 201 0001", "+15552010001"),
        ("+44 20 7946 0958", "+442079460958"),
        ("+15552010001", "+15552010001"),
    ])
    def test_valid_numbers(self, raw, expected):
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "12345", "2 555 201 0001", "not a phone"])
    def test_invalid_numbers(self, raw):
        assert normalize_phone(raw) is None


# ============================================================
# TESTS - DISPATCH
# ============================================================

class TestDispatch:
    """Per-recipient outcomes and aggregate counts."""

    @pytest.mark.asyncio
    async def test_two_valid_one_invalid(self, db, fake_gateway):
        result = await _dispatcher(db, fake_gateway).dispatch(
            [("555-201-0001", "hello"), ("555-201-0002", "hello"), ("12345", "hello")],
            batch_kind="manual",
        )

        assert result.sent == 2
        assert result.failed == 1
        assert result.total == 3

        attempts = _by_recipient(db, result.batch_id)
        assert attempts["555-201-0001"].status == "SENT"
        assert attempts["555-201-0001"].external_id.startswith("SM")
        assert attempts["555-201-0002"].status == "SENT"
        assert attempts["12345"].status == "FAILED"
        assert attempts["12345"].failure_kind == "permanent"
        assert attempts["12345"].attempt_count == 0
        # the invalid number never reaches the gateway
        assert sorted(to for to, _ in fake_gateway.calls) == ["+15552010001", "+15552010002"]

    @pytest.mark.asyncio
    async def test_permanent_failure_is_not_retried(self, db, gateway_factory):
        gateway = gateway_factory({"+15552010001": [PermanentSendFailure("HTTP 400 code 21211")]})

        result = await _dispatcher(db, gateway).dispatch([("555-201-0001", "hi")])

        attempt = _by_recipient(db, result.batch_id)["555-201-0001"]
        assert attempt.status == "FAILED"
        assert attempt.failure_kind == "permanent"
        assert attempt.attempt_count == 1
        assert len(gateway.calls) == 1

    @pytest.mark.asyncio
    async def test_transient_failure_retried_then_sent(self, db, gateway_factory):
        gateway = gateway_factory({"+15552010001": [TransientSendFailure("HTTP 503")]})

        result = await _dispatcher(db, gateway).dispatch([("555-201-0001", "hi")])

        attempt = _by_recipient(db, result.batch_id)["555-201-0001"]
        assert result.sent == 1
        assert attempt.status == "SENT"
        assert attempt.attempt_count == 2
        assert attempt.failure_kind is None

    @pytest.mark.asyncio
    async def test_transient_failure_exhausts_retries(self, db, gateway_factory):
        error = TransientSendFailure("HTTP 429")
        gateway = gateway_factory({"+15552010001": [error, error, error, error]})

        result = await _dispatcher(db, gateway, max_retries=2).dispatch([("555-201-0001", "hi")])

        attempt = _by_recipient(db, result.batch_id)["555-201-0001"]
        assert result.failed == 1
        assert attempt.status == "FAILED"
        assert attempt.failure_kind == "transient"
        assert attempt.attempt_count == 3
        assert len(gateway.calls) == 3

    @pytest.mark.asyncio
    async def test_backoff_is_exponential(self, db, gateway_factory):
        error = TransientSendFailure("HTTP 500")
        gateway = gateway_factory({"+15552010001": [error, error, error]})
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        await _dispatcher(db, gateway, backoff_seconds=1.5, sleep=record_sleep).dispatch(
            [("555-201-0001", "hi")]
        )

        assert delays == [1.5, 3.0]

    @pytest.mark.asyncio
    async def test_gateway_timeout_is_transient(self, db, fake_gateway):
        class SlowGateway(type(fake_gateway)):
            async def send(self, to, body):
                self.calls.append((to, body))
                await asyncio.sleep(1)
                return "never"

        gateway = SlowGateway()
        result = await _dispatcher(db, gateway, timeout_seconds=0.01, max_retries=1).dispatch(
            [("555-201-0001", "hi")]
        )

        attempt = _by_recipient(db, result.batch_id)["555-201-0001"]
        assert attempt.status == "FAILED"
        assert attempt.failure_kind == "transient"
        assert attempt.error_message == "gateway timeout"
        assert len(gateway.calls) == 2

    @pytest.mark.asyncio
    async def test_unexpected_gateway_error_fails_one_recipient(self, db, gateway_factory):
        gateway = gateway_factory({"+15552010002": [RuntimeError("malformed reply")]})

        result = await _dispatcher(db, gateway).dispatch(
            [("555-201-0001", "hi"), ("555-201-0002", "hi"), ("555-201-0003", "hi")]
        )

        attempts = _by_recipient(db, result.batch_id)
        assert (result.sent, result.failed) == (2, 1)
        assert attempts["555-201-0002"].status == "FAILED"
        assert attempts["555-201-0002"].failure_kind == "permanent"
        assert attempts["555-201-0002"].error_message.startswith("unexpected RuntimeError")
        assert attempts["555-201-0002"].attempt_count == 1
        assert attempts["555-201-0001"].status == "SENT"
        assert attempts["555-201-0003"].status == "SENT"
        assert len(gateway.calls) == 3

    @pytest.mark.asyncio
    async def test_empty_batch(self, db, fake_gateway):
        result = await _dispatcher(db, fake_gateway).dispatch([])
        assert (result.sent, result.failed, result.total) == (0, 0, 0)
        assert fake_gateway.calls == []

    @pytest.mark.asyncio
    async def test_attempts_carry_batch_metadata(self, db, fake_gateway):
        result = await _dispatcher(db, fake_gateway).dispatch(
            [("555-201-0001", "hi")],
            batch_kind="manual",
            departure_id="DEP-1400",
            triggered_by="ops-7",
        )

        attempt = _by_recipient(db, result.batch_id)["555-201-0001"]
        assert attempt.batch_kind == "manual"
        assert attempt.departure_id == "DEP-1400"
        assert attempt.triggered_by == "ops-7"
        assert attempt.normalized_recipient == "+15552010001"
        assert attempt.reminder_id is None


# ============================================================
# TESTS - GATEWAY UNAVAILABLE
# ============================================================

class TestGatewayUnavailable:
    """The whole batch fails without further gateway calls."""

    @pytest.mark.asyncio
    async def test_batch_aborts_and_pending_attempts_fail(self, db, gateway_factory):
        gateway = gateway_factory({"+15552010001": [GatewayUnavailable("cannot connect")]})
        messages = [(f"555-201-000{i}", "hi") for i in range(1, 6)]

        with pytest.raises(GatewayUnavailable) as exc_info:
            await _dispatcher(db, gateway, max_concurrency=1).dispatch(messages, batch_kind="reminder")

        assert exc_info.value.sent == 0
        assert exc_info.value.failed == 5
        attempts = crud.list_attempts(db, departure_id=None)
        assert len(attempts) == 5
        assert all(a.status == "FAILED" for a in attempts)
        assert all(a.failure_kind == "gateway_unavailable" for a in attempts)
        assert len(gateway.calls) == 1

    @pytest.mark.asyncio
    async def test_sent_before_outage_are_kept(self, db, gateway_factory):
        gateway = gateway_factory({"+15552010002": [GatewayUnavailable("authentication rejected")]})
        messages = [("555-201-0001", "hi"), ("555-201-0002", "hi"), ("555-201-0003", "hi")]

        with pytest.raises(GatewayUnavailable) as exc_info:
            await _dispatcher(db, gateway, max_concurrency=1).dispatch(messages)

        assert exc_info.value.sent == 1
        assert exc_info.value.failed == 2
        statuses = {a.recipient: a.status for a in crud.list_attempts(db)}
        assert statuses == {"555-201-0001": "SENT", "555-201-0002": "FAILED", "555-201-0003": "FAILED"}
