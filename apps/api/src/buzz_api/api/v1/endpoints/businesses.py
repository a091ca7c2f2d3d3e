"""Owner-side business actions."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from buzz_api.api.dependencies.session import require_business_owner
from buzz_api.api.envelope import success
from buzz_api.db.session import get_session
from buzz_api.models.user import User
from buzz_api.services.businesses import BusinessApprovalService

from .admin_businesses import serialize_business


router = APIRouter(prefix="/businesses", tags=["businesses"])


@router.post("/{business_id}/reapply", summary="Resubmit a rejected business for review")
async def reapply_business(
    business_id: UUID,
    owner: User = Depends(require_business_owner),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    business = await BusinessApprovalService(db).reapply(owner.id, business_id)
    await db.commit()
    return success(serialize_business(business), "Business resubmitted for review")
