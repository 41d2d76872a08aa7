"""Integration tests for moving order template items into a cart."""

from decimal import Decimal

import pytest
from fastapi import HTTPException
from services.store_service.models import (
    CartItem,
    CartItemSource,
    DiscountKind,
    DiscountMode,
    OrderTemplate,
    OrderTemplateActivity,
    OrderTemplateItem,
    TemplateActivityType,
    TemplateItemStatus,
    TemplateStatus,
)
from services.store_service.services import carts
from services.store_service.services.template_to_cart import (
    MigrationMode,
    move_template_items_to_cart,
)
from sqlalchemy import select
from tests.factories import (
    CartFactory,
    CartItemFactory,
    DiscountFactory,
    ManualDiscountAssignmentFactory,
    OrderTemplateFactory,
    OrderTemplateItemFactory,
    ProductFactory,
    ProductVariantFactory,
)

USER_ID = "customer-1"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _variant(db, price="100.00"):
    product = ProductFactory.create(base_price=Decimal(price))
    db.add(product)
    await db.flush()
    variant = ProductVariantFactory.create(product.id, price=Decimal(price))
    db.add(variant)
    await db.commit()
    return product, variant


async def _template_with_item(db, product, variant, quantity=2, **template_overrides):
    template = OrderTemplateFactory.create(USER_ID, **template_overrides)
    db.add(template)
    await db.flush()
    item = OrderTemplateItemFactory.create(
        template.id,
        product.id,
        variant.id,
        quantity=quantity,
        unit_price_snapshot=variant.price,
    )
    db.add(item)
    await db.commit()
    return template, item


async def _manual_discount(db, mode=DiscountMode.FIXED, value="10", template_id=None):
    discount = DiscountFactory.create(
        kind=DiscountKind.MANUAL, mode=mode, value=Decimal(value)
    )
    db.add(discount)
    await db.flush()
    db.add(
        ManualDiscountAssignmentFactory.create(
            discount.id, USER_ID, template_id=template_id
        )
    )
    await db.commit()
    return discount


async def _cart_lines(db) -> list[CartItem]:
    cart, items = await carts.load_cart(db, USER_ID)
    return items


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_merge_uses_quantity_weighted_manual_discount(db_session):
    """Cart qty 3 @ 4.00 off + template qty 2 @ 10.00 off → qty 5 @ 6.40 off."""
    product, variant = await _variant(db_session)
    cart = CartFactory.create(USER_ID)
    db_session.add(cart)
    await db_session.flush()
    db_session.add(
        CartItemFactory.create(
            cart.id, variant.id, quantity=3, manual_discount_amount=Decimal("4.00")
        )
    )
    await db_session.commit()
    template, item = await _template_with_item(db_session, product, variant, quantity=2)
    await _manual_discount(db_session, value="10")

    result = await move_template_items_to_cart(
        db_session, template_id=template.id, user_id=USER_ID
    )

    [line] = await _cart_lines(db_session)
    assert line.quantity == 5
    assert line.manual_discount_amount == Decimal("6.40")
    assert result.cart_id == cart.id
    assert result.moved_item_ids == [item.id]
    assert result.pricing.total_original == Decimal("500.00")
    assert result.pricing.total_manual_discount == Decimal("32.00")
    assert result.pricing.final_total == Decimal("468.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_new_line_is_tagged_with_template_provenance(db_session):
    product, variant = await _variant(db_session, price="80.00")
    template, item = await _template_with_item(db_session, product, variant, quantity=1)
    await _manual_discount(db_session, mode=DiscountMode.PERCENTAGE, value="25")

    result = await move_template_items_to_cart(
        db_session, template_id=template.id, user_id=USER_ID
    )

    [line] = await _cart_lines(db_session)
    assert line.source_type == CartItemSource.TEMPLATE
    assert line.template_id == template.id
    assert line.template_item_id == item.id
    assert line.manual_discount_amount == Decimal("20.00")
    assert result.pricing.final_total == Decimal("60.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_moved_items_leave_the_template(db_session):
    product, variant = await _variant(db_session)
    template, item = await _template_with_item(db_session, product, variant)

    result = await move_template_items_to_cart(
        db_session, template_id=template.id, user_id=USER_ID
    )

    moved = (
        await db_session.execute(
            select(OrderTemplateItem)
            .where(OrderTemplateItem.id == item.id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert moved.status == TemplateItemStatus.IN_CART
    assert moved.moved_cart_id == result.cart_id
    assert moved.moved_to_cart_at is not None

    refreshed = await db_session.get(OrderTemplate, template.id)
    assert refreshed.total_cost == Decimal("0.00")

    activity = (
        await db_session.execute(
            select(OrderTemplateActivity).where(
                OrderTemplateActivity.template_id == template.id
            )
        )
    ).scalars().all()
    assert [a.activity_type for a in activity] == [
        TemplateActivityType.ITEMS_MOVED_TO_CART
    ]


# ---------------------------------------------------------------------------
# Modes & selection
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_replace_mode_clears_cart_and_coupon(db_session):
    product, variant = await _variant(db_session)
    _, other_variant = await _variant(db_session, price="30.00")
    coupon = DiscountFactory.create()
    db_session.add(coupon)
    await db_session.flush()
    cart = CartFactory.create(USER_ID, applied_coupon_id=coupon.id)
    db_session.add(cart)
    await db_session.flush()
    db_session.add(
        CartItemFactory.create(
            cart.id, other_variant.id, unit_price_snapshot=Decimal("30.00")
        )
    )
    await db_session.commit()
    template, _ = await _template_with_item(db_session, product, variant, quantity=1)

    result = await move_template_items_to_cart(
        db_session,
        template_id=template.id,
        user_id=USER_ID,
        mode=MigrationMode.REPLACE,
    )

    cart, lines = await carts.load_cart(db_session, USER_ID)
    assert [line.variant_id for line in lines] == [variant.id]
    assert cart.applied_coupon_id is None
    assert result.pricing.total_original == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_only_selected_items_are_moved(db_session):
    product, variant = await _variant(db_session)
    _, second_variant = await _variant(db_session, price="40.00")
    template, first = await _template_with_item(db_session, product, variant)
    second = OrderTemplateItemFactory.create(
        template.id,
        second_variant.product_id,
        second_variant.id,
        unit_price_snapshot=Decimal("40.00"),
    )
    db_session.add(second)
    await db_session.commit()

    result = await move_template_items_to_cart(
        db_session, template_id=template.id, user_id=USER_ID, item_ids=[second.id]
    )

    assert result.moved_item_ids == [second.id]
    [line] = await _cart_lines(db_session)
    assert line.variant_id == second_variant.id


@pytest.mark.asyncio
@pytest.mark.integration
async def test_template_scoped_discount_wins_over_general_one(db_session):
    product, variant = await _variant(db_session)
    template, _ = await _template_with_item(db_session, product, variant, quantity=1)
    await _manual_discount(db_session, value="30", template_id=template.id)
    await _manual_discount(db_session, value="5")

    await move_template_items_to_cart(
        db_session, template_id=template.id, user_id=USER_ID
    )

    [line] = await _cart_lines(db_session)
    assert line.manual_discount_amount == Decimal("30.00")


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cancelled_template_cannot_be_moved(db_session):
    product, variant = await _variant(db_session)
    template, _ = await _template_with_item(
        db_session, product, variant, status=TemplateStatus.CANCELLED
    )

    with pytest.raises(HTTPException) as exc_info:
        await move_template_items_to_cart(
            db_session, template_id=template.id, user_id=USER_ID
        )

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Cannot move cancelled template"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_no_active_items_is_rejected(db_session):
    product, variant = await _variant(db_session)
    template, item = await _template_with_item(db_session, product, variant)
    item.status = TemplateItemStatus.CANCELLED
    await db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        await move_template_items_to_cart(
            db_session, template_id=template.id, user_id=USER_ID
        )

    assert exc_info.value.detail == "No valid items to move"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_other_users_template_is_not_found(db_session):
    product, variant = await _variant(db_session)
    template, _ = await _template_with_item(db_session, product, variant)

    with pytest.raises(HTTPException) as exc_info:
        await move_template_items_to_cart(
            db_session, template_id=template.id, user_id="someone-else"
        )

    assert exc_info.value.status_code == 404
