"""Process-local ledger counters for operators."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from buzz_api.api.dependencies.session import require_admin
from buzz_api.observability.ledger import get_ledger_store


router = APIRouter(prefix="/admin/observability", tags=["Observability"])


@router.get("/ledger", dependencies=[Depends(require_admin)], summary="Ledger activity snapshot")
async def get_ledger_snapshot() -> dict[str, object]:
    """Counts and amounts recorded since process start."""
    store = get_ledger_store()
    return store.snapshot().as_dict()
