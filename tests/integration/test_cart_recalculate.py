"""Integration tests for the cart pricing engine (recalculate + presentation)."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException
from services.store_service.models import CartItem, DiscountMode
from services.store_service.services import carts
from services.store_service.services.cart_pricing import (
    apply_cart_pricing_logic,
    lock_cart_items,
    recalculate_cart,
)
from sqlalchemy import select
from tests.factories import (
    CartFactory,
    CartItemFactory,
    DiscountFactory,
    DiscountSegmentFactory,
    ProductFactory,
    ProductSegmentFactory,
    ProductVariantFactory,
    SegmentFactory,
)

USER_ID = "customer-1"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _variant(db, price="100.00", segment=None):
    product = ProductFactory.create(base_price=Decimal(price))
    db.add(product)
    await db.flush()
    variant = ProductVariantFactory.create(product.id, price=Decimal(price))
    db.add(variant)
    if segment is not None:
        db.add(ProductSegmentFactory.create(product.id, segment.id))
    await db.commit()
    return product, variant


async def _segment(db):
    segment = SegmentFactory.create()
    db.add(segment)
    await db.commit()
    return segment


async def _coupon(db, *, segment=None, **overrides):
    coupon = DiscountFactory.create(**overrides)
    db.add(coupon)
    await db.flush()
    if segment is not None:
        db.add(DiscountSegmentFactory.create(coupon.id, segment.id))
    await db.commit()
    return coupon


async def _cart(db, coupon=None):
    cart = CartFactory.create(USER_ID, applied_coupon_id=coupon.id if coupon else None)
    db.add(cart)
    await db.commit()
    return cart


async def _items(db, cart_id) -> list[CartItem]:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.cart_id == cart_id)
        .order_by(CartItem.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def _additive(totals):
    return (
        totals.total_original
        - totals.total_manual_discount
        - totals.total_coupon_discount
        == totals.final_total
    )


# ---------------------------------------------------------------------------
# recalculate_cart
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_eligible_percentage_coupon_excludes_manual_discount(db_session):
    """Coupon 20% on a 100.00 item: coupon 20.00 counts, manual 15.00 does not."""
    segment = await _segment(db_session)
    _, variant = await _variant(db_session, segment=segment)
    coupon = await _coupon(
        db_session, segment=segment, mode=DiscountMode.PERCENTAGE, value=Decimal("20")
    )
    cart = await _cart(db_session, coupon)
    db_session.add(
        CartItemFactory.create(
            cart.id, variant.id, manual_discount_amount=Decimal("15.00")
        )
    )
    await db_session.commit()

    totals = await recalculate_cart(db_session, cart.id)

    assert totals.total_original == Decimal("100.00")
    assert totals.total_coupon_discount == Decimal("20.00")
    assert totals.total_manual_discount == Decimal("0.00")
    assert totals.final_total == Decimal("80.00")
    [item] = await _items(db_session, cart.id)
    assert item.coupon_discount_amount == Decimal("20.00")
    # Manual amount stays on the row but is dormant
    assert item.manual_discount_amount == Decimal("15.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_removing_coupon_restores_manual_discount(db_session):
    segment = await _segment(db_session)
    _, variant = await _variant(db_session, segment=segment)
    coupon = await _coupon(db_session, segment=segment, value=Decimal("20"))
    cart = await _cart(db_session, coupon)
    db_session.add(
        CartItemFactory.create(
            cart.id, variant.id, quantity=2, manual_discount_amount=Decimal("15.00")
        )
    )
    await db_session.commit()
    await recalculate_cart(db_session, cart.id)

    totals = await carts.remove_coupon(db_session, user_id=USER_ID)

    assert totals.total_coupon_discount == Decimal("0.00")
    assert totals.total_manual_discount == Decimal("30.00")
    assert totals.final_total == Decimal("170.00")
    [item] = await _items(db_session, cart.id)
    assert item.coupon_discount_amount == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_expired_coupon_is_ignored_without_error(db_session):
    _, variant = await _variant(db_session)
    coupon = await _coupon(
        db_session, expires_at=datetime.now(timezone.utc) - timedelta(days=1)
    )
    cart = await _cart(db_session, coupon)
    db_session.add(
        CartItemFactory.create(
            cart.id,
            variant.id,
            coupon_discount_amount=Decimal("10.00"),
            manual_discount_amount=Decimal("5.00"),
        )
    )
    await db_session.commit()

    totals = await recalculate_cart(db_session, cart.id)

    assert totals.total_coupon_discount == Decimal("0.00")
    assert totals.total_manual_discount == Decimal("5.00")
    assert totals.final_total == Decimal("95.00")
    [item] = await _items(db_session, cart.id)
    assert item.coupon_discount_amount == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_coupon_applies_per_item_by_segment(db_session):
    """Only the in-segment line gets the coupon; the other keeps its manual discount."""
    segment = await _segment(db_session)
    _, eligible = await _variant(db_session, price="100.00", segment=segment)
    _, other = await _variant(db_session, price="50.00")
    coupon = await _coupon(
        db_session, segment=segment, mode=DiscountMode.FIXED, value=Decimal("30")
    )
    cart = await _cart(db_session, coupon)
    db_session.add_all(
        [
            CartItemFactory.create(
                cart.id,
                eligible.id,
                quantity=2,
                manual_discount_amount=Decimal("7.00"),
            ),
            CartItemFactory.create(
                cart.id,
                other.id,
                quantity=3,
                unit_price_snapshot=Decimal("50.00"),
                manual_discount_amount=Decimal("4.00"),
            ),
        ]
    )
    await db_session.commit()

    totals = await recalculate_cart(db_session, cart.id)

    assert totals.total_original == Decimal("350.00")
    assert totals.total_coupon_discount == Decimal("60.00")
    assert totals.total_manual_discount == Decimal("12.00")
    assert totals.final_total == Decimal("278.00")
    assert _additive(totals)

    by_variant = {item.variant_id: item for item in await _items(db_session, cart.id)}
    assert by_variant[eligible.id].coupon_discount_amount == Decimal("30.00")
    assert by_variant[other.id].coupon_discount_amount == Decimal("0.00")
    assert by_variant[other.id].manual_discount_amount == Decimal("4.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_recalculate_is_stable_when_repeated(db_session):
    segment = await _segment(db_session)
    _, variant = await _variant(db_session, price="33.33", segment=segment)
    coupon = await _coupon(db_session, segment=segment, value=Decimal("15"))
    cart = await _cart(db_session, coupon)
    db_session.add(
        CartItemFactory.create(
            cart.id, variant.id, quantity=7, unit_price_snapshot=Decimal("33.33")
        )
    )
    await db_session.commit()

    first = await recalculate_cart(db_session, cart.id)
    second = await recalculate_cart(db_session, cart.id)

    assert first == second
    assert _additive(second)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_recalculate_missing_cart_raises_not_found(db_session):
    with pytest.raises(HTTPException) as exc_info:
        await recalculate_cart(db_session, uuid.uuid4())

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "Cart not found"


# ---------------------------------------------------------------------------
# Cart mutations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_add_item_snapshots_price_and_merges_same_variant(db_session):
    _, variant = await _variant(db_session, price="120.00")

    await carts.add_item(db_session, user_id=USER_ID, variant_id=variant.id, quantity=1)
    variant.price = Decimal("150.00")
    await db_session.commit()
    totals = await carts.add_item(
        db_session, user_id=USER_ID, variant_id=variant.id, quantity=2
    )

    cart, items = await carts.load_cart(db_session, USER_ID)
    assert len(items) == 1
    assert items[0].quantity == 3
    assert items[0].unit_price_snapshot == Decimal("120.00")
    assert totals.total_original == Decimal("360.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_apply_coupon_normalizes_code(db_session):
    _, variant = await _variant(db_session)
    coupon = await _coupon(db_session, coupon_code="SPRING10", value=Decimal("10"))
    await carts.add_item(db_session, user_id=USER_ID, variant_id=variant.id, quantity=1)

    totals = await carts.apply_coupon(db_session, user_id=USER_ID, code=" spring10 ")

    cart, _ = await carts.load_cart(db_session, USER_ID)
    assert cart.applied_coupon_id == coupon.id
    assert totals.total_coupon_discount == Decimal("10.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_apply_unknown_coupon_is_rejected(db_session):
    with pytest.raises(HTTPException) as exc_info:
        await carts.apply_coupon(db_session, user_id=USER_ID, code="NOPE")

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Invalid or expired coupon"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_update_quantity_zero_removes_line(db_session):
    _, variant = await _variant(db_session)
    await carts.add_item(db_session, user_id=USER_ID, variant_id=variant.id, quantity=2)
    _, items = await carts.load_cart(db_session, USER_ID)

    totals = await carts.update_item_quantity(
        db_session, user_id=USER_ID, item_id=items[0].id, quantity=0
    )

    _, items = await carts.load_cart(db_session, USER_ID)
    assert items == []
    assert totals.final_total == Decimal("0.00")


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_presentation_caps_fixed_coupon_per_line(db_session):
    segment = await _segment(db_session)
    _, variant = await _variant(db_session, price="25.00", segment=segment)
    coupon = await _coupon(
        db_session, segment=segment, mode=DiscountMode.FIXED, value=Decimal("40")
    )
    cart = await _cart(db_session, coupon)
    db_session.add(
        CartItemFactory.create(
            cart.id, variant.id, unit_price_snapshot=Decimal("25.00")
        )
    )
    await db_session.commit()

    items = await lock_cart_items(db_session, cart.id)
    view = await apply_cart_pricing_logic(db_session, cart, items)

    [line] = view.items
    assert line.discount_source == "coupon"
    assert line.discount_amount == Decimal("25.00")
    assert line.final_subtotal == Decimal("0.00")
    assert view.applied_coupon["coupon_code"] == coupon.coupon_code
    assert view.applied_coupon["segments"] == [
        {"id": segment.id, "name": segment.name}
    ]
