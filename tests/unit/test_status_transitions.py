"""Unit tests for the explicit status transition tables."""

import pytest
from libs.common.transitions import (
    InvalidTransition,
    can_transition,
    ensure_transition,
    is_terminal,
)
from services.payments_service.models import PAYMENT_TRANSITIONS, PaymentStatus
from services.store_service.models import (
    ORDER_TRANSITIONS,
    RETURN_TRANSITIONS,
    TEMPLATE_ITEM_TRANSITIONS,
    OrderStatus,
    ReturnStatus,
    TemplateItemStatus,
)


@pytest.mark.unit
def test_pending_order_can_be_paid():
    assert (
        ensure_transition(
            ORDER_TRANSITIONS, "order", OrderStatus.PENDING, OrderStatus.PAID
        )
        == OrderStatus.PAID
    )


@pytest.mark.unit
def test_paid_order_cannot_go_back_to_pending():
    with pytest.raises(InvalidTransition) as exc_info:
        ensure_transition(
            ORDER_TRANSITIONS, "order", OrderStatus.PAID, OrderStatus.PENDING
        )
    assert "from paid to pending" in str(exc_info.value)
    assert isinstance(exc_info.value, ValueError)


@pytest.mark.unit
@pytest.mark.parametrize(
    "status", [OrderStatus.FAILED, OrderStatus.CANCELLED, OrderStatus.REFUNDED]
)
def test_order_terminal_states(status):
    assert is_terminal(ORDER_TRANSITIONS, status)


@pytest.mark.unit
def test_payment_refund_only_after_success():
    assert can_transition(
        PAYMENT_TRANSITIONS, PaymentStatus.SUCCESS, PaymentStatus.REFUNDED
    )
    assert not can_transition(
        PAYMENT_TRANSITIONS, PaymentStatus.PENDING, PaymentStatus.REFUNDED
    )
    assert is_terminal(PAYMENT_TRANSITIONS, PaymentStatus.FAILED)


@pytest.mark.unit
def test_template_item_in_cart_is_terminal():
    assert can_transition(
        TEMPLATE_ITEM_TRANSITIONS, TemplateItemStatus.ACTIVE, TemplateItemStatus.IN_CART
    )
    assert is_terminal(TEMPLATE_ITEM_TRANSITIONS, TemplateItemStatus.IN_CART)


@pytest.mark.unit
@pytest.mark.parametrize("decision", [ReturnStatus.APPROVED, ReturnStatus.REJECTED])
def test_return_is_decided_once(decision):
    assert can_transition(RETURN_TRANSITIONS, ReturnStatus.PENDING, decision)
    assert is_terminal(RETURN_TRANSITIONS, decision)
