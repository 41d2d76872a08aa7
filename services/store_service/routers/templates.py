"""Order template router: staff curation and customer move-to-cart."""

import uuid

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import get_current_user, require_staff
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.models import OrderTemplateActivity
from services.store_service.schemas import (
    MoveToCartRequest,
    MoveToCartResponse,
    PricedTemplateItemResponse,
    TemplateActivityResponse,
    TemplateCreate,
    TemplateDetailResponse,
    TemplateDiscountResponse,
    TemplateItemCreate,
    TemplateItemResponse,
    TemplateResponse,
    TemplateStatusUpdate,
    TemplateTotalsResponse,
)
from services.store_service.services import templates
from services.store_service.services.template_to_cart import (
    move_template_items_to_cart,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store-templates"])


@router.post(
    "/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED
)
async def create_template(
    template_in: TemplateCreate,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """Staff opens a draft template for a customer."""
    return await templates.create_template(
        db,
        user_id=template_in.user_id,
        created_by=current_user.user_id,
        title=template_in.title,
        notes=template_in.notes,
    )


@router.post(
    "/templates/{template_id}/items",
    response_model=TemplateItemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_template_item(
    template_id: uuid.UUID,
    item_in: TemplateItemCreate,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    return await templates.add_template_item(
        db,
        template_id=template_id,
        product_id=item_in.product_id,
        variant_id=item_in.variant_id,
        quantity=item_in.quantity,
        actor_id=current_user.user_id,
        notes=item_in.notes,
    )


@router.post(
    "/templates/{template_id}/items/{item_id}/cancel",
    response_model=TemplateItemResponse,
)
async def cancel_template_item(
    template_id: uuid.UUID,
    item_id: uuid.UUID,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    return await templates.cancel_template_item(
        db, template_id=template_id, item_id=item_id, actor_id=current_user.user_id
    )


@router.patch("/templates/{template_id}/status", response_model=TemplateResponse)
async def update_template_status(
    template_id: uuid.UUID,
    status_in: TemplateStatusUpdate,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    return await templates.change_template_status(
        db,
        template_id=template_id,
        new_status=status_in.status,
        actor_id=current_user.user_id,
    )


@router.get("/templates/{template_id}", response_model=TemplateDetailResponse)
async def get_template(
    template_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Template with items priced by the owner's manual discount."""
    owner_filter = None if current_user.is_staff else current_user.user_id
    template = await templates.get_template(db, template_id, user_id=owner_filter)
    priced = await templates.price_template(db, template)

    return TemplateDetailResponse(
        **TemplateResponse.model_validate(template).model_dump(),
        items=[
            PricedTemplateItemResponse(
                id=p.line.item_id,
                product_id=p.line.product_id,
                variant_id=p.line.variant_id,
                quantity=p.line.quantity,
                status=p.line.status,
                original_unit_price=p.original_unit_price,
                original_total_price=p.original_total_price,
                discounted_unit_price=p.discounted_unit_price,
                discounted_total_price=p.discounted_total_price,
                discount_percentage=p.discount_percentage,
                discount_per_unit=p.discount_per_unit,
                total_discount_amount=p.total_discount_amount,
            )
            for p in priced.pricing.items
        ],
        applied_discounts=[
            TemplateDiscountResponse(
                id=d.id,
                mode=d.mode,
                value=d.value,
                expires_at=d.expires_at,
                segment_ids=sorted(d.segment_ids, key=str),
            )
            for d in priced.pricing.applied_discounts
        ],
        totals=TemplateTotalsResponse.model_validate(priced.totals),
    )


@router.get(
    "/templates/{template_id}/activity",
    response_model=list[TemplateActivityResponse],
)
async def get_template_activity(
    template_id: uuid.UUID,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    await templates.get_template(db, template_id)
    result = await db.execute(
        select(OrderTemplateActivity)
        .where(OrderTemplateActivity.template_id == template_id)
        .order_by(OrderTemplateActivity.created_at, OrderTemplateActivity.id)
    )
    return result.scalars().all()


@router.post("/templates/{template_id}/move-to-cart", response_model=MoveToCartResponse)
async def move_to_cart(
    template_id: uuid.UUID,
    request: MoveToCartRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Move ACTIVE template items into the caller's cart (APPEND or REPLACE)."""
    return await move_template_items_to_cart(
        db,
        template_id=template_id,
        user_id=current_user.user_id,
        item_ids=request.item_ids,
        mode=request.mode,
    )
