"""Store cart router: cart operations, coupons and price previews."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.schemas import (
    AppliedCouponResponse,
    CartItemAdd,
    CartItemUpdate,
    CartLineResponse,
    CartResponse,
    CartTotalsResponse,
    CouponApplyRequest,
    PricingResolveRequest,
    PricingResolveResponse,
)
from services.store_service.services import carts, catalog
from services.store_service.services.cart_pricing import (
    CartPricingView,
    apply_cart_pricing_logic,
    recalculate_cart,
)
from services.store_service.services.discount_resolver import resolve_product_discount
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


# ============================================================================
# CART HELPERS
# ============================================================================


def build_cart_response(cart, view: CartPricingView) -> CartResponse:
    return CartResponse(
        id=cart.id,
        user_id=cart.user_id,
        applied_coupon_id=cart.applied_coupon_id,
        items=[
            CartLineResponse(
                id=line.item.id,
                variant_id=line.item.variant_id,
                product_id=line.product_id,
                quantity=line.item.quantity,
                unit_price_snapshot=line.item.unit_price_snapshot,
                manual_discount_amount=line.item.manual_discount_amount,
                coupon_discount_amount=line.item.coupon_discount_amount,
                source_type=line.item.source_type,
                template_id=line.item.template_id,
                template_item_id=line.item.template_item_id,
                original_subtotal=line.original_subtotal,
                discount_amount=line.discount_amount,
                discount_source=line.discount_source,
                final_subtotal=line.final_subtotal,
            )
            for line in view.items
        ],
        total_original_cost=view.total_original_cost,
        total_discount_amount=view.total_discount_amount,
        final_total=view.final_total,
        applied_coupon=(
            AppliedCouponResponse(**view.applied_coupon)
            if view.applied_coupon
            else None
        ),
    )


async def _cart_response(db: AsyncSession, user_id: str) -> CartResponse:
    cart, items = await carts.load_cart(db, user_id)
    view = await apply_cart_pricing_logic(db, cart, items)
    return build_cart_response(cart, view)


# ============================================================================
# CART ENDPOINTS
# ============================================================================


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Get the current cart with per-line discounts and coupon details."""
    return await _cart_response(db, current_user.user_id)


@router.post("/cart/items", response_model=CartResponse)
async def add_to_cart(
    item_in: CartItemAdd,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Add a variant to the cart. The line price is snapshotted now."""
    await carts.add_item(
        db,
        user_id=current_user.user_id,
        variant_id=item_in.variant_id,
        quantity=item_in.quantity,
    )
    return await _cart_response(db, current_user.user_id)


@router.patch("/cart/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: uuid.UUID,
    item_in: CartItemUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Update item quantity. Setting quantity to 0 removes the item."""
    await carts.update_item_quantity(
        db,
        user_id=current_user.user_id,
        item_id=item_id,
        quantity=item_in.quantity,
    )
    return await _cart_response(db, current_user.user_id)


@router.delete("/cart/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await carts.remove_item(db, user_id=current_user.user_id, item_id=item_id)
    return await _cart_response(db, current_user.user_id)


@router.delete("/cart", response_model=CartResponse)
async def clear_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await carts.clear_cart(db, user_id=current_user.user_id)
    return await _cart_response(db, current_user.user_id)


# ============================================================================
# COUPONS & PRICING
# ============================================================================


@router.post("/cart/coupon", response_model=CartResponse)
async def apply_coupon(
    request: CouponApplyRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Apply a coupon code to the cart."""
    await carts.apply_coupon(db, user_id=current_user.user_id, code=request.code)
    return await _cart_response(db, current_user.user_id)


@router.delete("/cart/coupon", response_model=CartResponse)
async def remove_coupon(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await carts.remove_coupon(db, user_id=current_user.user_id)
    return await _cart_response(db, current_user.user_id)


@router.post("/cart/recalculate", response_model=CartTotalsResponse)
async def recalculate(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Re-run cart pricing and persist per-line coupon amounts."""
    cart = await carts.get_or_create_cart(db, current_user.user_id)
    await db.commit()
    return await recalculate_cart(db, cart.id)


@router.post("/pricing/resolve", response_model=PricingResolveResponse)
async def resolve_price(
    request: PricingResolveRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Preview the single discount that applies to a product for this user."""
    product = await catalog.get_product(db, request.product_id)
    base_price = product.base_price
    if request.variant_id is not None:
        variant = await catalog.get_variant(db, request.variant_id)
        if variant.product_id != product.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Variant does not belong to product",
            )
        base_price = variant.price
    return await resolve_product_discount(
        db,
        product_id=product.id,
        base_price=base_price,
        user_id=current_user.user_id,
        coupon_code=request.coupon_code,
    )
