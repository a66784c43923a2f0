from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_user
from app.db import crud_bookings, crud_spaces
from app.db.session import get_db
from app.schemas.booking import BookingOut
from app.schemas.space import (
    EarningsOut,
    PauseRequest,
    PeriodEarningsOut,
    SpaceCreate,
    SpaceEarningsOut,
    SpaceOut,
    SpaceUpdate,
)

router = APIRouter()


@router.get("/spaces")
async def host_spaces(
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """
    List all listings of the current user, whatever their moderation status,
    so the owner can see pending / rejected ones too.
    """
    items = await crud_spaces.list_spaces_for_owner(db, current_user.id)
    return {"success": True, "items": [SpaceOut.model_validate(s) for s in items]}


@router.post("/spaces", status_code=201)
async def create_space(
    body: SpaceCreate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    space = await crud_spaces.create_space(db, current_user.id, **body.model_dump())
    return {
        "success": True,
        "message": "Listing created and pending approval.",
        "data": SpaceOut.model_validate(space),
    }


@router.put("/spaces/{space_id}")
async def update_space(
    space_id: int,
    body: SpaceUpdate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    space = await crud_spaces.update_space(db, space_id, current_user.id, body.model_dump(exclude_unset=True))
    return {"success": True, "data": SpaceOut.model_validate(space)}


@router.post("/spaces/{space_id}/pause")
async def pause_space(
    space_id: int,
    body: PauseRequest,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    space = await crud_spaces.set_paused(db, space_id, current_user.id, body.paused)
    return {"success": True, "data": SpaceOut.model_validate(space)}


@router.delete("/spaces/{space_id}")
async def delete_space(
    space_id: int,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    await crud_spaces.delete_space(db, space_id, current_user.id)
    return {"success": True, "message": "deleted"}


@router.get("/earnings")
async def earnings(
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    summary = await crud_spaces.get_owner_earnings(db, current_user.id)
    return {"success": True, "data": EarningsOut(**summary)}


@router.get("/earnings/spaces")
async def earnings_by_space(
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    rows = await crud_spaces.get_earnings_by_space(db, current_user.id)
    return {"success": True, "items": [SpaceEarningsOut(**r) for r in rows]}


@router.get("/earnings/period")
async def earnings_by_period(
    period: str = Query("month"),
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    rows = await crud_spaces.get_earnings_by_period(db, current_user.id, period)
    return {"success": True, "period": period, "items": [PeriodEarningsOut(**r) for r in rows]}


@router.get("/bookings")
async def host_bookings(
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """
    List all bookings on spaces owned by the current user.
    """
    bookings = await crud_bookings.list_for_owner(db, current_user.id, status)
    upcoming = await crud_bookings.upcoming_count(db, current_user.id, role="owner")
    return {
        "success": True,
        "items": [BookingOut.model_validate(b) for b in bookings],
        "upcoming": upcoming,
    }
