"""Discount administration (staff): coupons, manual discounts, scoping, audit."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from libs.auth.dependencies import require_staff
from libs.auth.models import AuthUser
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.models import (
    CreatorRole,
    Discount,
    DiscountAction,
    DiscountActivityLog,
    DiscountKind,
    DiscountSegment,
    ManualDiscountAssignment,
    OrderTemplate,
    Segment,
)
from services.store_service.schemas import (
    DiscountActivityResponse,
    DiscountAssign,
    DiscountAssignmentResponse,
    DiscountCreate,
    DiscountResponse,
    DiscountSegmentsAttach,
    DiscountToggle,
)
from services.store_service.services import discount_store
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store-discounts"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def log_discount_activity(
    db: AsyncSession,
    discount: Discount,
    action: DiscountAction,
    actor: AuthUser,
    details: dict | None = None,
) -> None:
    db.add(
        DiscountActivityLog(
            discount_id=discount.id,
            action=action,
            actor_id=actor.user_id,
            actor_role=actor.role,
            details=details,
        )
    )


async def _get_discount(db: AsyncSession, discount_id: uuid.UUID) -> Discount:
    discount = await db.get(Discount, discount_id)
    if not discount:
        raise HTTPException(status_code=404, detail="Discount not found")
    return discount


async def _validate_segments(db: AsyncSession, segment_ids: list[uuid.UUID]) -> None:
    found = set(
        (await db.execute(select(Segment.id).where(Segment.id.in_(segment_ids))))
        .scalars()
        .all()
    )
    missing = set(segment_ids) - found
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown segment(s): {', '.join(sorted(str(m) for m in missing))}",
        )


async def _to_response(db: AsyncSession, discount: Discount) -> DiscountResponse:
    segments = await discount_store.get_discount_segments(db, [discount.id])
    return DiscountResponse(
        **DiscountResponse.model_validate(discount).model_dump(exclude={"segment_ids"}),
        segment_ids=sorted(segments[discount.id], key=str),
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post(
    "/discounts", response_model=DiscountResponse, status_code=status.HTTP_201_CREATED
)
async def create_discount(
    payload: DiscountCreate,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """Create a coupon or manual discount (Staff only)."""
    expires_at = ensure_utc(payload.expires_at)
    if expires_at <= utc_now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="expires_at must be in the future",
        )

    if payload.coupon_code:
        existing = await db.execute(
            select(Discount.id).where(Discount.coupon_code == payload.coupon_code)
        )
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Coupon code '{payload.coupon_code}' already exists",
            )

    if payload.segment_ids:
        await _validate_segments(db, payload.segment_ids)

    discount = Discount(
        kind=payload.kind,
        mode=payload.mode,
        value=payload.value,
        coupon_code=payload.coupon_code,
        description=payload.description,
        expires_at=expires_at,
        is_active=True,
        created_by=current_user.user_id,
        created_by_role=(
            CreatorRole.ADMIN if current_user.is_admin else CreatorRole.STAFF
        ),
    )
    db.add(discount)
    await db.flush()
    for segment_id in set(payload.segment_ids):
        db.add(DiscountSegment(discount_id=discount.id, segment_id=segment_id))

    log_discount_activity(
        db,
        discount,
        DiscountAction.CREATED,
        current_user,
        {
            "kind": payload.kind.value,
            "mode": payload.mode.value,
            "value": str(payload.value),
            "coupon_code": payload.coupon_code,
        },
    )
    await db.commit()
    logger.info("Created %s discount %s", discount.kind.value, discount.id)
    return await _to_response(db, discount)


@router.post("/discounts/{discount_id}/segments", response_model=DiscountResponse)
async def attach_segments(
    discount_id: uuid.UUID,
    payload: DiscountSegmentsAttach,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """Scope a discount to segments. Already attached segments are ignored."""
    discount = await _get_discount(db, discount_id)
    await _validate_segments(db, payload.segment_ids)

    existing = (await discount_store.get_discount_segments(db, [discount.id]))[
        discount.id
    ]
    added = [sid for sid in dict.fromkeys(payload.segment_ids) if sid not in existing]
    for segment_id in added:
        db.add(DiscountSegment(discount_id=discount.id, segment_id=segment_id))

    log_discount_activity(
        db,
        discount,
        DiscountAction.SEGMENTS_ATTACHED,
        current_user,
        {"segment_ids": [str(s) for s in added]},
    )
    await db.commit()
    return await _to_response(db, discount)


@router.post(
    "/discounts/{discount_id}/assign",
    response_model=DiscountAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_discount(
    discount_id: uuid.UUID,
    payload: DiscountAssign,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """Assign a MANUAL discount to a user, optionally for one template only."""
    discount = await _get_discount(db, discount_id)
    if discount.kind != DiscountKind.MANUAL:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only manual discounts can be assigned to users",
        )

    if payload.template_id is not None:
        template = await db.get(OrderTemplate, payload.template_id)
        if not template or template.deleted_at is not None:
            raise HTTPException(status_code=404, detail="Template not found")
        if template.user_id != payload.user_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Template does not belong to this user",
            )

    assignment = ManualDiscountAssignment(
        discount_id=discount.id,
        user_id=payload.user_id,
        template_id=payload.template_id,
        assigned_by=current_user.user_id,
    )
    db.add(assignment)
    log_discount_activity(
        db,
        discount,
        DiscountAction.ASSIGNED,
        current_user,
        {
            "user_id": payload.user_id,
            "template_id": str(payload.template_id) if payload.template_id else None,
        },
    )
    await db.commit()
    return assignment


@router.patch("/discounts/{discount_id}/active", response_model=DiscountResponse)
async def toggle_discount(
    discount_id: uuid.UUID,
    payload: DiscountToggle,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """Activate or deactivate a discount."""
    discount = await _get_discount(db, discount_id)
    if discount.is_active != payload.is_active:
        discount.is_active = payload.is_active
        log_discount_activity(
            db,
            discount,
            (
                DiscountAction.ACTIVATED
                if payload.is_active
                else DiscountAction.DEACTIVATED
            ),
            current_user,
        )
        await db.commit()
    return await _to_response(db, discount)


@router.get("/discounts", response_model=list[DiscountResponse])
async def list_discounts(
    kind: DiscountKind | None = Query(None),
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    """List discounts, newest first, optionally by kind."""
    query = select(Discount).order_by(desc(Discount.created_at))
    if kind is not None:
        query = query.where(Discount.kind == kind)
    discounts = (await db.execute(query)).scalars().all()

    segments = await discount_store.get_discount_segments(db, [d.id for d in discounts])
    return [
        DiscountResponse(
            **DiscountResponse.model_validate(d).model_dump(exclude={"segment_ids"}),
            segment_ids=sorted(segments[d.id], key=str),
        )
        for d in discounts
    ]


@router.get(
    "/discounts/{discount_id}/activity",
    response_model=list[DiscountActivityResponse],
)
async def list_discount_activity(
    discount_id: uuid.UUID,
    current_user: AuthUser = Depends(require_staff),
    db: AsyncSession = Depends(get_async_db),
):
    await _get_discount(db, discount_id)
    result = await db.execute(
        select(DiscountActivityLog)
        .where(DiscountActivityLog.discount_id == discount_id)
        .order_by(DiscountActivityLog.created_at, DiscountActivityLog.id)
    )
    return result.scalars().all()
