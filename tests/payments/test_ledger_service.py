from decimal import Decimal

import pytest
from sqlalchemy import func, select

from domain.common.exceptions import PaymentNotFoundException
from domain.payment.entity import GatewayType, PaymentStatus
from application.services import payment_ledger_service
from infrastructure.models.payment import OrderModel, WebhookEventModel


async def _create(ledger, **overrides):
    data = dict(
        organization_id="org1",
        user_id="u1",
        gateway=GatewayType.FLOW,
        amount=Decimal("19990"),
        currency="CLP",
        order_id="ord_1",
        gateway_payment_intent_id="9876",
        metadata={"redirect_url": "https://flow/pay?token=t"},
    )
    data.update(overrides)
    return await ledger.create_payment(**data)


async def _count_events(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(WebhookEventModel))


@pytest.mark.asyncio
async def test_create_and_lookup_payment(ledger):
    created = await _create(ledger)
    assert created.status == PaymentStatus.PENDING
    assert created.created_at is not None

    by_id = await ledger.get_payment_by_id(created.id)
    assert by_id is not None
    assert by_id.amount == Decimal("19990")
    assert by_id.currency == "CLP"
    assert by_id.metadata == {"redirect_url": "https://flow/pay?token=t"}

    by_intent = await ledger.get_payment_by_gateway_payment_intent_id("9876")
    assert by_intent.id == created.id
    assert (await ledger.get_payment_by_gateway_payment_intent_id("9876", GatewayType.PAYPAL)) is None


@pytest.mark.asyncio
async def test_lookup_missing_returns_none(ledger):
    assert await ledger.get_payment_by_id("nope") is None
    assert await ledger.get_payment_by_gateway_payment_intent_id("nope") is None


@pytest.mark.asyncio
async def test_same_intent_id_on_different_gateways(ledger):
    flow = await _create(ledger)
    paypal = await _create(ledger, gateway=GatewayType.PAYPAL, currency="USD", amount=Decimal("10"))
    assert (await ledger.get_payment_by_gateway_payment_intent_id("9876", "flow")).id == flow.id
    assert (await ledger.get_payment_by_gateway_payment_intent_id("9876", "paypal")).id == paypal.id


@pytest.mark.asyncio
async def test_lookup_by_gateway_transaction_id(ledger):
    flow = await _create(ledger, gateway_transaction_id="CAP-1")
    paypal = await _create(ledger, gateway=GatewayType.PAYPAL, currency="USD", gateway_transaction_id="CAP-1")

    assert (await ledger.get_payment_by_gateway_transaction_id("CAP-1", GatewayType.FLOW)).id == flow.id
    assert (await ledger.get_payment_by_gateway_transaction_id("CAP-1", "paypal")).id == paypal.id
    assert await ledger.get_payment_by_gateway_transaction_id("CAP-1", GatewayType.NOWPAYMENTS) is None
    assert await ledger.get_payment_by_gateway_transaction_id("CAP-2") is None


@pytest.mark.asyncio
async def test_partial_status_update_keeps_untouched_fields(ledger):
    created = await _create(ledger)
    updated = await ledger.update_payment_status(created.id, PaymentStatus.SUCCEEDED, gateway_transaction_id="tx-1")

    assert updated.status == PaymentStatus.SUCCEEDED
    assert updated.gateway_transaction_id == "tx-1"
    assert updated.gateway_payment_intent_id == "9876"
    assert updated.metadata == {"redirect_url": "https://flow/pay?token=t"}
    assert updated.updated_at >= created.updated_at

    replaced = await ledger.update_payment_status(created.id, "refunded", metadata={"reason": "chargeback"})
    assert replaced.status == PaymentStatus.REFUNDED
    assert replaced.gateway_transaction_id == "tx-1"
    assert replaced.metadata == {"reason": "chargeback"}


@pytest.mark.asyncio
async def test_update_missing_payment_raises(ledger):
    with pytest.raises(PaymentNotFoundException):
        await ledger.update_payment_status("missing", PaymentStatus.SUCCEEDED)


@pytest.mark.asyncio
async def test_record_webhook_event_is_idempotent(ledger, session_factory):
    assert await ledger.record_webhook_event("flow", "tok-1", "payment.confirmation") is False
    # recorded but not processed yet: a retry must still be processed
    assert await ledger.record_webhook_event("flow", "tok-1", "payment.confirmation") is False

    await ledger.mark_webhook_event_as_processed("flow", "tok-1")
    assert await ledger.record_webhook_event("flow", "tok-1", "payment.confirmation") is True
    assert await _count_events(session_factory) == 1


@pytest.mark.asyncio
async def test_same_event_id_on_two_gateways_are_distinct(ledger, session_factory):
    await ledger.record_webhook_event("flow", "evt-1", "payment.confirmation")
    await ledger.mark_webhook_event_as_processed("flow", "evt-1")
    assert await ledger.record_webhook_event("paypal", "evt-1", "CHECKOUT.ORDER.COMPLETED") is False
    assert await _count_events(session_factory) == 2


@pytest.mark.asyncio
async def test_concurrent_insert_conflict_is_treated_as_duplicate(ledger, session_factory, monkeypatch):
    await ledger.record_webhook_event("nowpayments", "p-1-finished", "payment.finished")
    await ledger.mark_webhook_event_as_processed("nowpayments", "p-1-finished")

    original = ledger._get_webhook_event
    calls = []

    async def racing_lookup(gateway, gateway_event_id):
        # first check loses the race: the row is inserted by another worker in between
        calls.append(gateway_event_id)
        if len(calls) == 1:
            return None
        return await original(gateway, gateway_event_id)

    monkeypatch.setattr(ledger, "_get_webhook_event", racing_lookup)
    assert await ledger.record_webhook_event("nowpayments", "p-1-finished", "payment.finished") is True
    assert len(calls) == 2
    assert await _count_events(session_factory) == 1


@pytest.mark.asyncio
async def test_record_webhook_event_stores_payment_and_metadata(ledger, session_factory):
    payment = await _create(ledger)
    await ledger.record_webhook_event("flow", "tok-9", "payment.confirmation", payment.id, {"status": "succeeded"})
    async with session_factory() as session:
        row = (await session.execute(select(WebhookEventModel))).scalar_one()
    assert row.payment_id == payment.id
    assert row.extra_metadata == {"status": "succeeded"}
    assert row.processed is False


@pytest.mark.asyncio
async def test_mark_processed_failure_is_swallowed(ledger, monkeypatch):
    errors = []

    def broken_factory(*args, **kwargs):
        raise RuntimeError("database is gone")

    monkeypatch.setattr(ledger, "_uow_factory", broken_factory)
    monkeypatch.setattr(payment_ledger_service.logger, "error", lambda event, **kw: errors.append(event))
    await ledger.mark_webhook_event_as_processed("flow", "tok-1")
    assert errors == ["webhook_mark_processed_failed"]


@pytest.mark.asyncio
async def test_mark_processed_unknown_event_warns(ledger, monkeypatch):
    warnings = []
    monkeypatch.setattr(payment_ledger_service.logger, "warning", lambda event, **kw: warnings.append(event))
    await ledger.mark_webhook_event_as_processed("flow", "never-seen")
    assert warnings == ["webhook_mark_processed_missing"]


@pytest.mark.asyncio
async def test_fulfill_order(ledger, session_factory):
    async with session_factory() as session:
        session.add(OrderModel(id="ord_1", organization_id="org1", status="pending"))
        await session.commit()

    assert await ledger.fulfill_order("ord_1") is True
    async with session_factory() as session:
        order = await session.get(OrderModel, "ord_1")
    assert order.status == "completed"


@pytest.mark.asyncio
async def test_fulfill_missing_order_does_not_raise(ledger):
    assert await ledger.fulfill_order("ghost") is False
