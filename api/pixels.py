"""
Pixel API Endpoints

職責：
1. 放置一格（PlaceCell）
2. 查詢目前的畫布視圖（一次性；即時更新請用 /api/grid/ws）
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
import logging

from database import Settings
from schemas import PixelPlace, PlaceResponse, CellResponse, ErrorResponse, GridResponse
from core.exceptions import InvalidRequest, StoreUnavailable
from core.live_feed import LiveFeed
from core.placement_arbiter import PlacementArbiter
from services.grid_view_service import project_grid_view, serialize_cell
from api.dependencies import get_app_settings, get_arbiter, get_live_feed

router = APIRouter(prefix="/api", tags=["pixels"])
logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str, reason: str = None) -> JSONResponse:
    content = {"error": message}
    if reason:
        content["reason"] = reason
    return JSONResponse(status_code=status_code, content=content)


@router.post(
    "/place-pixel",
    response_model=PlaceResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def place_pixel(pixel_data: PixelPlace, arbiter: PlacementArbiter = Depends(get_arbiter)):
    """
    放置一格

    前置條件：
    - 座標在畫布範圍內，顏色與 userId 非空
    - 這個 userId 還沒放過
    - 這個座標還沒被放過

    返回：
        200 {"success": true, "cell": {...}}
        400 {"error", "reason": "InvalidRequest"}
        500 {"error", "reason": "AlreadyPlaced" | "CellTaken" | "Busy" | "StoreUnavailable"}

    成功後 LiveFeed 會把新狀態推送給所有連線中的客戶端（包含自己）
    """
    try:
        result = arbiter.place_cell(
            pixel_data.userId,
            pixel_data.x,
            pixel_data.y,
            pixel_data.color
        )
    except StoreUnavailable as e:
        return error_response(500, str(e), e.reason)
    except Exception as e:
        logger.error(f"Failed to place pixel: {e}", exc_info=True)
        return error_response(500, "Internal error")

    if not result.ok:
        status_code = 400 if result.reason == InvalidRequest.reason else 500
        return error_response(status_code, result.message, result.reason)

    return PlaceResponse(cell=CellResponse(**serialize_cell(result.cell)))


@router.get("/grid", response_model=GridResponse)
def get_grid(
    live_feed: LiveFeed = Depends(get_live_feed),
    settings: Settings = Depends(get_app_settings)
):
    """
    取得目前的畫布視圖

    返回：
        - cells: 已佔用的格子
        - totalPlaced: 已佔用數量
        - revealThreshold / revealed / progress: 揭曉狀態
    """
    try:
        snapshot = live_feed.current_snapshot()
    except StoreUnavailable as e:
        return error_response(500, str(e), e.reason)

    return project_grid_view(
        snapshot,
        settings.grid_width,
        settings.grid_height,
        settings.effective_reveal_threshold
    )
