"""Integration tests for PhonePe callback processing."""

from decimal import Decimal

import pytest
from services.payments_service.models import Payment, PaymentEvent, PaymentStatus
from services.payments_service.phonepe_client import encode_payload, sign
from services.payments_service.services.webhook import process_webhook
from services.store_service.models import Order, OrderStatus, OrderStatusHistory
from sqlalchemy import func, select
from tests.factories import OrderFactory, PaymentFactory

USER_ID = "customer-1"
SALT_KEY = "test-salt-key"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _pending_payment(db, **payment_overrides):
    order = OrderFactory.create(USER_ID)
    db.add(order)
    await db.flush()
    payment = PaymentFactory.create(order.id, USER_ID, **payment_overrides)
    db.add(payment)
    await db.commit()
    return order, payment


def _callback(transaction_id, state="COMPLETED"):
    payload_b64 = encode_payload(
        {
            "success": state == "COMPLETED",
            "code": f"PAYMENT_{state}",
            "data": {
                "merchantId": "TESTMERCHANT",
                "merchantTransactionId": transaction_id,
                "transactionId": "T2410191234",
                "amount": 10500,
                "state": state,
                "responseCode": "SUCCESS" if state == "COMPLETED" else state,
            },
        }
    )
    return payload_b64, sign(payload_b64, "", SALT_KEY, "1")


async def _reload(db, model, pk):
    return (
        await db.execute(
            select(model).where(model.id == pk).execution_options(populate_existing=True)
        )
    ).scalar_one()


async def _count(db, query) -> int:
    return (await db.execute(query)).scalar_one()


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_success_callback_marks_payment_and_order_paid(db_session, phonepe_client):
    order, payment = await _pending_payment(db_session)
    payload_b64, x_verify = _callback(payment.gateway_transaction_id)

    outcome = await process_webhook(db_session, phonepe_client, payload_b64, x_verify)

    assert (outcome.status_code, outcome.message) == (200, "OK")
    payment = await _reload(db_session, Payment, payment.id)
    order = await _reload(db_session, Order, order.id)
    assert payment.status == PaymentStatus.SUCCESS
    assert payment.provider_reference == "T2410191234"
    assert payment.paid_at is not None
    assert order.status == OrderStatus.PAID
    assert order.paid_at is not None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_duplicate_callback_is_idempotent(db_session, phonepe_client):
    """Same callback twice: one PAID transition, two audit events."""
    order, payment = await _pending_payment(db_session)
    payload_b64, x_verify = _callback(payment.gateway_transaction_id)

    first = await process_webhook(db_session, phonepe_client, payload_b64, x_verify)
    second = await process_webhook(db_session, phonepe_client, payload_b64, x_verify)

    assert first.message == "OK"
    assert (second.status_code, second.message) == (200, "Already processed")
    paid_transitions = await _count(
        db_session,
        select(func.count())
        .select_from(OrderStatusHistory)
        .where(
            OrderStatusHistory.order_id == order.id,
            OrderStatusHistory.new_status == OrderStatus.PAID,
        ),
    )
    events = await _count(
        db_session,
        select(func.count())
        .select_from(PaymentEvent)
        .where(PaymentEvent.payment_id == payment.id),
    )
    assert paid_transitions == 1
    assert events == 2
    payment = await _reload(db_session, Payment, payment.id)
    assert payment.status == PaymentStatus.SUCCESS


@pytest.mark.asyncio
@pytest.mark.integration
async def test_failed_callback_leaves_order_pending(db_session, phonepe_client):
    order, payment = await _pending_payment(db_session)
    payload_b64, x_verify = _callback(payment.gateway_transaction_id, state="FAILED")

    outcome = await process_webhook(db_session, phonepe_client, payload_b64, x_verify)

    assert outcome.message == "OK"
    payment = await _reload(db_session, Payment, payment.id)
    order = await _reload(db_session, Order, order.id)
    assert payment.status == PaymentStatus.FAILED
    assert order.status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.integration
async def test_pending_callback_keeps_payment_pending(db_session, phonepe_client):
    _, payment = await _pending_payment(db_session)
    payload_b64, x_verify = _callback(payment.gateway_transaction_id, state="PENDING")

    outcome = await process_webhook(db_session, phonepe_client, payload_b64, x_verify)

    assert outcome.status_code == 200
    payment = await _reload(db_session, Payment, payment.id)
    assert payment.status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.integration
async def test_success_after_order_cancelled_does_not_reopen_order(
    db_session, phonepe_client
):
    order, payment = await _pending_payment(db_session)
    order.status = OrderStatus.CANCELLED
    await db_session.commit()
    payload_b64, x_verify = _callback(payment.gateway_transaction_id)

    outcome = await process_webhook(db_session, phonepe_client, payload_b64, x_verify)

    assert outcome.message == "OK"
    order = await _reload(db_session, Order, order.id)
    assert order.status == OrderStatus.CANCELLED


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invalid_signature_is_rejected(db_session, phonepe_client):
    _, payment = await _pending_payment(db_session)
    payload_b64, _ = _callback(payment.gateway_transaction_id)

    outcome = await process_webhook(
        db_session, phonepe_client, payload_b64, "deadbeef###1"
    )

    assert (outcome.status_code, outcome.message) == (401, "Invalid signature")
    assert await _count(db_session, select(func.count()).select_from(PaymentEvent)) == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_transaction_is_not_found(db_session, phonepe_client):
    payload_b64, x_verify = _callback("TXN-UNKNOWN")

    outcome = await process_webhook(db_session, phonepe_client, payload_b64, x_verify)

    assert (outcome.status_code, outcome.message) == (404, "Payment not found")


@pytest.mark.asyncio
@pytest.mark.integration
@pytest.mark.parametrize("payload_b64, x_verify", [(None, "x###1"), ("abc", None)])
async def test_missing_parameters(db_session, phonepe_client, payload_b64, x_verify):
    outcome = await process_webhook(db_session, phonepe_client, payload_b64, x_verify)

    assert (outcome.status_code, outcome.message) == (400, "Missing parameters")


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_route_answers_plain_text(payments_client, db_session):
    order, payment = await _pending_payment(db_session)
    payload_b64, x_verify = _callback(payment.gateway_transaction_id)

    response = await payments_client.post(
        "/payments/webhook",
        json={"response": payload_b64},
        headers={"X-VERIFY": x_verify},
    )

    assert response.status_code == 200
    assert response.text == "OK"
    assert response.headers["content-type"].startswith("text/plain")
    order = await _reload(db_session, Order, order.id)
    assert order.status == OrderStatus.PAID


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_route_without_header_is_bad_request(payments_client):
    response = await payments_client.post(
        "/payments/webhook", json={"response": "abc"}
    )

    assert response.status_code == 400
    assert response.text == "Missing parameters"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_route_signed_payload_with_non_object_data(payments_client):
    payload_b64 = encode_payload({"success": True, "data": "oops"})
    x_verify = sign(payload_b64, "", SALT_KEY, "1")

    response = await payments_client.post(
        "/payments/webhook",
        json={"response": payload_b64},
        headers={"X-VERIFY": x_verify},
    )

    assert response.status_code == 400
    assert response.text == "Missing parameters"
    assert response.headers["content-type"].startswith("text/plain")
