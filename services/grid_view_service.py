"""
畫布視圖服務：把 GridSnapshot 投影成前端需要的資料

純計算邏輯，不涉及狀態轉換；揭曉門檻只是設定值，核心不依賴它
"""
from typing import Any, Dict, Optional

from core.grid_store import Cell
from core.live_feed import GridSnapshot


def serialize_cell(cell: Cell) -> Dict[str, Any]:
    """
    單一格子的 JSON 形式

    範例：
        {"x": 3, "y": 4, "color": "#ff0000", "placedBy": "u1",
         "placedAt": "2024-01-01T00:00:00+00:00"}
    """
    return {
        "x": cell.coordinate.x,
        "y": cell.coordinate.y,
        "color": cell.color,
        "placedBy": cell.owner_identity,
        "placedAt": cell.placed_at.isoformat() if cell.placed_at else None,
    }


def is_revealed(total_placed: int, reveal_threshold: int) -> bool:
    return total_placed >= reveal_threshold


def reveal_progress(total_placed: int, reveal_threshold: int) -> float:
    """
    揭曉進度（0.0 ~ 1.0）

    門檻 <= 0 視為已揭曉
    """
    if reveal_threshold <= 0:
        return 1.0
    return min(total_placed / reveal_threshold, 1.0)


def project_grid_view(
    snapshot: GridSnapshot,
    grid_width: int,
    grid_height: int,
    reveal_threshold: Optional[int] = None,
) -> Dict[str, Any]:
    """
    把快照投影成前端的畫布視圖

    參數：
        snapshot: LiveFeed 的快照
        grid_width, grid_height: 畫布尺寸
        reveal_threshold: 揭曉門檻（None = 整張畫布）

    返回：
        {
            "version": 快照版本,
            "width", "height": 畫布尺寸,
            "cells": 已佔用格子列表（依 x, y 排序）,
            "totalPlaced": 已佔用數量,
            "revealThreshold": 門檻,
            "revealed": 是否已揭曉,
            "progress": 揭曉進度,
        }
    """
    threshold = grid_width * grid_height if reveal_threshold is None else reveal_threshold
    total = snapshot.total_placed

    return {
        "version": snapshot.version,
        "width": grid_width,
        "height": grid_height,
        "cells": [serialize_cell(cell) for cell in snapshot.sorted_cells()],
        "totalPlaced": total,
        "revealThreshold": threshold,
        "revealed": is_revealed(total, threshold),
        "progress": reveal_progress(total, threshold),
    }
