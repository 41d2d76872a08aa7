"""Unit tests for template-level discount application and totals."""

import uuid
from decimal import Decimal

import pytest
from services.store_service.models import DiscountMode, TemplateItemStatus
from services.store_service.services.template_discounts import (
    ScopedDiscount,
    TemplateLine,
    apply_template_discounts,
    calculate_template_totals,
)

SEGMENT_A = uuid.uuid4()
SEGMENT_B = uuid.uuid4()


def _line(price, quantity=1, segments=(), status=TemplateItemStatus.ACTIVE):
    return TemplateLine(
        item_id=uuid.uuid4(),
        product_id=uuid.uuid4(),
        variant_id=uuid.uuid4(),
        quantity=quantity,
        unit_price=Decimal(price),
        status=status,
        segment_ids=frozenset(segments),
    )


def _scoped(mode, value, segments=()):
    return ScopedDiscount(
        id=uuid.uuid4(),
        mode=mode,
        value=Decimal(value),
        segment_ids=frozenset(segments),
    )


@pytest.mark.unit
def test_no_discounts_returns_zeroed_discount_fields():
    result = apply_template_discounts([_line("50.00", 2)], [])

    assert result.applied_discounts == []
    priced = result.items[0]
    assert priced.original_total_price == Decimal("100.00")
    assert priced.discounted_total_price == Decimal("100.00")
    assert priced.discount_percentage == Decimal("0.00")
    assert priced.total_discount_amount == Decimal("0.00")


@pytest.mark.unit
def test_segment_scoped_discount_only_hits_matching_items():
    in_segment = _line("100.00", 2, segments=[SEGMENT_A])
    outside = _line("40.00", 1, segments=[SEGMENT_B])
    discount = _scoped(DiscountMode.PERCENTAGE, "10", segments=[SEGMENT_A])

    result = apply_template_discounts([in_segment, outside], [discount])

    first, second = result.items
    assert first.discounted_unit_price == Decimal("90.00")
    assert first.discount_per_unit == Decimal("10.00")
    assert first.total_discount_amount == Decimal("20.00")
    assert first.discount_percentage == Decimal("10.00")
    assert second.discounted_unit_price == Decimal("40.00")
    assert second.total_discount_amount == Decimal("0.00")
    assert result.applied_discounts == [discount]


@pytest.mark.unit
def test_discount_without_segments_applies_to_every_item():
    lines = [_line("100.00", segments=[SEGMENT_A]), _line("20.00")]
    result = apply_template_discounts(lines, [_scoped(DiscountMode.FIXED, "5")])

    assert [p.discounted_unit_price for p in result.items] == [
        Decimal("95.00"),
        Decimal("15.00"),
    ]
    assert all(p.discount_percentage == Decimal("0.00") for p in result.items)


@pytest.mark.unit
def test_only_first_discount_is_used():
    first = _scoped(DiscountMode.PERCENTAGE, "10")
    second = _scoped(DiscountMode.PERCENTAGE, "50")

    result = apply_template_discounts([_line("100.00")], [first, second])

    assert result.items[0].discounted_unit_price == Decimal("90.00")
    assert result.applied_discounts == [first]


@pytest.mark.unit
def test_totals_skip_cancelled_items():
    lines = [
        _line("100.00", 2),
        _line("30.00", 1, status=TemplateItemStatus.CANCELLED),
    ]
    result = apply_template_discounts(lines, [_scoped(DiscountMode.PERCENTAGE, "25")])

    totals = calculate_template_totals(result.items)

    assert totals.total_original_cost == Decimal("200.00")
    assert totals.total_cost == Decimal("150.00")
    assert totals.total_discount_amount == Decimal("50.00")
