"""
Presence API Endpoints

線上人數（觀眾數），與放置規則完全獨立
"""
from fastapi import APIRouter, Depends, HTTPException

from schemas import HeartbeatSubmit, PresenceResponse
from services.presence_service import PresenceRegistry
from api.dependencies import get_presence

router = APIRouter(prefix="/api/presence", tags=["presence"])


@router.post("/heartbeat", response_model=PresenceResponse)
def heartbeat(data: HeartbeatSubmit, presence: PresenceRegistry = Depends(get_presence)):
    """客戶端定期呼叫，超過 TTL 沒有心跳就視為離線"""
    if not data.userId.strip():
        raise HTTPException(status_code=400, detail="userId must be a non-empty string.")
    presence.heartbeat(data.userId)
    return PresenceResponse(online=presence.online_count())


@router.delete("/{identity}", response_model=PresenceResponse)
def leave(identity: str, presence: PresenceRegistry = Depends(get_presence)):
    presence.leave(identity)
    return PresenceResponse(online=presence.online_count())


@router.get("", response_model=PresenceResponse)
def get_presence_count(presence: PresenceRegistry = Depends(get_presence)):
    return PresenceResponse(online=presence.online_count())
