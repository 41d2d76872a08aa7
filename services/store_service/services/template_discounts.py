"""Template-level manual discount application.

Only the first discount of the (already ordered) list is considered; it applies
to every item whose product shares a segment with it, or to every item when the
discount has no segments. Items that do not qualify still get explicit zero
discount fields so consumers see one shape.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from libs.common.currency import ZERO, quantize_money
from services.store_service.models import (
    Discount,
    DiscountMode,
    OrderTemplateItem,
    TemplateItemStatus,
)
from services.store_service.services.discount_resolver import apply_discount_value


@dataclass(frozen=True)
class TemplateLine:
    item_id: uuid.UUID
    product_id: uuid.UUID
    variant_id: Optional[uuid.UUID]
    quantity: int
    unit_price: Decimal
    status: TemplateItemStatus
    segment_ids: frozenset = frozenset()


@dataclass(frozen=True)
class ScopedDiscount:
    id: uuid.UUID
    mode: DiscountMode
    value: Decimal
    expires_at: Optional[datetime] = None
    segment_ids: frozenset = frozenset()

    @classmethod
    def from_discount(cls, discount: Discount, segment_ids: Iterable[uuid.UUID]):
        return cls(
            id=discount.id,
            mode=discount.mode,
            value=discount.value,
            expires_at=discount.expires_at,
            segment_ids=frozenset(segment_ids),
        )


@dataclass(frozen=True)
class PricedTemplateLine:
    line: TemplateLine
    original_unit_price: Decimal
    original_total_price: Decimal
    discounted_unit_price: Decimal
    discounted_total_price: Decimal
    discount_percentage: Decimal
    discount_per_unit: Decimal
    total_discount_amount: Decimal


@dataclass
class TemplateDiscountResult:
    items: list[PricedTemplateLine] = field(default_factory=list)
    applied_discounts: list[ScopedDiscount] = field(default_factory=list)


@dataclass(frozen=True)
class TemplateTotals:
    total_original_cost: Decimal
    total_cost: Decimal
    total_discount_amount: Decimal


def build_template_lines(
    items: Sequence[OrderTemplateItem],
    product_segments: dict[uuid.UUID, set[uuid.UUID]],
) -> list[TemplateLine]:
    return [
        TemplateLine(
            item_id=item.id,
            product_id=item.product_id,
            variant_id=item.variant_id,
            quantity=item.quantity,
            unit_price=quantize_money(item.unit_price_snapshot),
            status=item.status,
            segment_ids=frozenset(product_segments.get(item.product_id, ())),
        )
        for item in items
    ]


def _undiscounted(line: TemplateLine) -> PricedTemplateLine:
    unit = quantize_money(line.unit_price)
    total = quantize_money(unit * line.quantity)
    return PricedTemplateLine(
        line=line,
        original_unit_price=unit,
        original_total_price=total,
        discounted_unit_price=unit,
        discounted_total_price=total,
        discount_percentage=ZERO,
        discount_per_unit=ZERO,
        total_discount_amount=ZERO,
    )


def apply_template_discounts(
    items: Sequence[TemplateLine], discounts: Sequence[ScopedDiscount]
) -> TemplateDiscountResult:
    if not discounts:
        return TemplateDiscountResult(items=[_undiscounted(line) for line in items])

    discount = discounts[0]
    priced: list[PricedTemplateLine] = []
    for line in items:
        applicable = not discount.segment_ids or bool(
            discount.segment_ids & line.segment_ids
        )
        if not applicable:
            priced.append(_undiscounted(line))
            continue

        unit = quantize_money(line.unit_price)
        discounted_unit = apply_discount_value(unit, discount)
        per_unit = unit - discounted_unit
        priced.append(
            PricedTemplateLine(
                line=line,
                original_unit_price=unit,
                original_total_price=quantize_money(unit * line.quantity),
                discounted_unit_price=discounted_unit,
                discounted_total_price=quantize_money(discounted_unit * line.quantity),
                discount_percentage=(
                    quantize_money(discount.value)
                    if discount.mode == DiscountMode.PERCENTAGE
                    else ZERO
                ),
                discount_per_unit=per_unit,
                total_discount_amount=quantize_money(per_unit * line.quantity),
            )
        )

    return TemplateDiscountResult(items=priced, applied_discounts=[discount])


def calculate_template_totals(items: Sequence[PricedTemplateLine]) -> TemplateTotals:
    """Totals over non-cancelled items."""
    original = ZERO
    discounted = ZERO
    for item in items:
        if item.line.status == TemplateItemStatus.CANCELLED:
            continue
        original += item.original_total_price
        discounted += item.discounted_total_price
    return TemplateTotals(
        total_original_cost=quantize_money(original),
        total_cost=quantize_money(discounted),
        total_discount_amount=quantize_money(original - discounted),
    )
