from fastapi import APIRouter, Depends

from app.api.dependencies import get_current_user
from app.schemas.user import UserOut

router = APIRouter()


@router.get("/me")
async def me(current_user=Depends(get_current_user)):
    return {"success": True, "data": UserOut.from_user(current_user)}
