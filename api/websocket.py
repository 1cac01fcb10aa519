"""
Grid WebSocket Endpoint

連線後：
1. 立即收到一次完整的畫布視圖
2. 之後每次有新的格子 commit，就收到一次新的視圖（太慢的客戶端會跳過中間版本）

Messages from server:
- grid_state: {"type": "grid_state", "payload": <GridResponse>}
- pong: 回應 ping
- error: 客戶端送來無法解析的訊息

Messages from client:
- ping: Keep-alive
"""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool
import asyncio
import json
import logging

from core.exceptions import StoreUnavailable
from core.live_feed import Subscription
from services.grid_view_service import project_grid_view

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


async def _send_snapshots(websocket: WebSocket, subscription: Subscription, settings) -> None:
    async for snapshot in subscription:
        await websocket.send_json({
            "type": "grid_state",
            "payload": project_grid_view(
                snapshot,
                settings.grid_width,
                settings.grid_height,
                settings.effective_reveal_threshold
            ),
        })


async def _receive_messages(websocket: WebSocket) -> None:
    while True:
        data = await websocket.receive_text()
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            await websocket.send_json({
                "type": "error",
                "payload": {"message": "Invalid JSON"},
            })
            continue

        if isinstance(message, dict) and message.get("type") == "ping":
            await websocket.send_json({"type": "pong"})


@router.websocket("/api/grid/ws")
async def grid_websocket(websocket: WebSocket):
    live_feed = websocket.app.state.live_feed
    settings = websocket.app.state.settings

    await websocket.accept()

    # 第一次訂閱可能要從資料庫載入，放到 threadpool
    try:
        subscription = await run_in_threadpool(live_feed.subscribe, asyncio.get_running_loop())
    except StoreUnavailable as e:
        logger.error(f"Grid websocket could not subscribe: {e}")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    sender = asyncio.create_task(_send_snapshots(websocket, subscription, settings))
    receiver = asyncio.create_task(_receive_messages(websocket))
    try:
        done, pending = await asyncio.wait(
            {sender, receiver},
            return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        # 被取消的 task 結束後才 unsubscribe
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.error(f"Grid websocket failed: {error}", exc_info=error)
    finally:
        sender.cancel()
        receiver.cancel()
        live_feed.unsubscribe(subscription)
        logger.debug("Grid websocket subscriber disconnected")
