"""
API 的 Request / Response 模型（Pydantic）

欄位名稱沿用前端既有的 JSON 格式（userId、placedBy、totalPlaced）
"""
from typing import List, Optional

from pydantic import BaseModel, StrictInt


# ============ Pixel ============

class PixelPlace(BaseModel):
    # 不接受 true / "3" 這類會被轉型的值
    x: StrictInt
    y: StrictInt
    color: str
    userId: str


class CellResponse(BaseModel):
    x: int
    y: int
    color: str
    placedBy: str
    placedAt: Optional[str] = None


class PlaceResponse(BaseModel):
    success: bool = True
    cell: CellResponse


class ErrorResponse(BaseModel):
    error: str
    reason: Optional[str] = None


class GridResponse(BaseModel):
    version: int
    width: int
    height: int
    cells: List[CellResponse]
    totalPlaced: int
    revealThreshold: int
    revealed: bool
    progress: float


# ============ Participant ============

class ParticipantResponse(BaseModel):
    userId: str
    hasPlaced: bool


# ============ Presence ============

class HeartbeatSubmit(BaseModel):
    userId: str


class PresenceResponse(BaseModel):
    online: int
