"""
Blacklist API
Assets excluded from scanning.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core.models import BlacklistEntry

from .deps import storage_dep

router = APIRouter(prefix="/blacklist", tags=["Blacklist"])


class BlacklistRequest(BaseModel):
    asset: str = Field(..., min_length=1, max_length=20)
    reason: str = ""


@router.get("")
def get_blacklist(storage=Depends(storage_dep)):
    entries = storage.get_blacklist()
    return {"count": len(entries), "assets": [e.model_dump(mode="json") for e in entries]}


@router.post("")
def add_asset(request: BlacklistRequest, storage=Depends(storage_dep)):
    entry = BlacklistEntry(asset=request.asset, reason=request.reason)
    storage.add_to_blacklist(entry)
    return {"status": "added", "asset": entry.asset}


@router.delete("/{asset}")
def remove_asset(asset: str, storage=Depends(storage_dep)):
    if not storage.remove_from_blacklist(asset):
        raise HTTPException(404, f"{asset.upper()} not blacklisted")
    return {"status": "removed", "asset": asset.upper()}
