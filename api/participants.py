"""
Participant API Endpoints

職責：
1. 匿名登入後註冊 identity（第一次引用時建立 has_placed=False 的紀錄）
2. 查詢 identity 是否已經放置過（前端據此隱藏調色盤）
"""
from fastapi import APIRouter, Depends, HTTPException
import logging

from schemas import ParticipantResponse
from core.exceptions import StoreUnavailable
from core.grid_store import GridStore
from api.dependencies import get_store

router = APIRouter(prefix="/api/participants", tags=["participants"])
logger = logging.getLogger(__name__)


def _validate_identity(identity: str) -> None:
    # identity 是不透明的 handle，只檢查非空，不做任何改寫
    if not identity.strip():
        raise HTTPException(status_code=400, detail="userId must be a non-empty string.")


@router.post("/{identity}", response_model=ParticipantResponse)
def register_participant(identity: str, store: GridStore = Depends(get_store)):
    """
    註冊參與者（冪等：重複呼叫不會改變 hasPlaced）
    """
    _validate_identity(identity)
    try:
        record = store.register_participant(identity)
        return ParticipantResponse(userId=record.identity, hasPlaced=record.has_placed)

    except StoreUnavailable as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{identity}", response_model=ParticipantResponse)
def get_participant(identity: str, store: GridStore = Depends(get_store)):
    """
    查詢參與者狀態

    未註冊過的 identity 視為尚未放置（hasPlaced=false），不會建立紀錄
    """
    _validate_identity(identity)
    try:
        record = store.get_participant(identity)
        return ParticipantResponse(
            userId=identity,
            hasPlaced=bool(record and record.has_placed)
        )

    except StoreUnavailable as e:
        raise HTTPException(status_code=500, detail=str(e))
