"""
PlacementArbiter：決定一次放置請求是否成立

核心規則（兩者必須在同一個 transaction 內檢查）：
1. 每個 identity 一輩子只能放一格
2. 每個座標一輩子只能被放一次

「先讀後寫」但沒有 transaction 的版本會出現競態：
兩個請求同時讀到「格子是空的」，然後都寫入成功。
這裡的做法是讀取與寫入都在 GridStore 的 transaction 內，
commit 時若發現被搶先（Conflict），整段重來，最多 max_attempts 次。
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
import logging
import threading
import time

from core.grid_store import Cell, Coordinate, GridStore
from core.exceptions import (
    AlreadyPlaced,
    Busy,
    CellTaken,
    Conflict,
    InvalidRequest,
    PlacementRejected,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacementResult:
    ok: bool
    cell: Optional[Cell] = None
    reason: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def committed(cls, cell: Cell) -> "PlacementResult":
        return cls(ok=True, cell=cell)

    @classmethod
    def rejected(cls, error: PlacementRejected) -> "PlacementResult":
        return cls(ok=False, reason=error.reason, message=str(error))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NonDecreasingClock:
    """
    包裝 wall clock，回傳值永不倒退

    系統時間被往回調時，沿用上一次的時間；
    快照的先後順序仍以 LiveFeed 的 version 為準
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            now = self._clock()
            if self._last is not None and now < self._last:
                now = self._last
            self._last = now
            return now


class PlacementArbiter:
    """PlaceCell 的決策程序，本身不保存任何狀態"""

    def __init__(
        self,
        store: GridStore,
        max_attempts: int = 3,
        retry_backoff: float = 0.01,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.store = store
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._clock = NonDecreasingClock(clock or _utcnow)

    def place_cell(self, identity, x, y, color) -> PlacementResult:
        """
        放置一格

        參數：
            identity: 匿名參與者的 handle
            x, y: 座標
            color: 顏色（不透明字串，只檢查非空）

        返回：
            PlacementResult（ok=True 時帶有新的 Cell；否則帶 reason）

        異常：
            StoreUnavailable: 底層儲存無法使用（不是「拒絕」，由 API 層回 500）
        """
        try:
            coordinate = self._validate(identity, x, y, color)
            cell = self._place_with_retry(identity, coordinate, color)
        except PlacementRejected as e:
            logger.info(f"Placement rejected for {identity!r} at ({x}, {y}): {e.reason}")
            return PlacementResult.rejected(e)

        logger.info(f"Placed {color} at ({x}, {y}) for {identity}")
        return PlacementResult.committed(cell)

    def _validate(self, identity, x, y, color) -> Coordinate:
        # bool 是 int 的子類別，要排除
        for value in (x, y):
            if not isinstance(value, int) or isinstance(value, bool):
                raise InvalidRequest("Coordinates must be integers.")

        if not self.store.in_bounds(x, y):
            raise InvalidRequest(
                f"Coordinate ({x}, {y}) is outside the "
                f"{self.store.grid_width}x{self.store.grid_height} grid."
            )

        if not isinstance(color, str) or not color.strip():
            raise InvalidRequest("Color must be a non-empty string.")

        if not isinstance(identity, str) or not identity.strip():
            raise InvalidRequest("userId must be a non-empty string.")

        return Coordinate(x, y)

    def _place_with_retry(self, identity: str, coordinate: Coordinate, color: str) -> Cell:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._attempt(identity, coordinate, color)
            except Conflict as e:
                logger.warning(
                    f"Conflict placing ({coordinate.x}, {coordinate.y}) for {identity} "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
                if attempt < self.max_attempts and self.retry_backoff > 0:
                    time.sleep(self.retry_backoff * attempt)

        raise Busy()

    def _attempt(self, identity: str, coordinate: Coordinate, color: str) -> Cell:
        with self.store.begin_transaction() as txn:
            participant = txn.read_participant(identity)
            if participant is not None and participant.has_placed:
                raise AlreadyPlaced(identity)

            if txn.read_cell(coordinate) is not None:
                raise CellTaken(coordinate.x, coordinate.y)

            cell = Cell(
                coordinate=coordinate,
                color=color,
                owner_identity=identity,
                placed_at=self._clock(),
            )
            txn.write_cell(coordinate, cell)
            txn.mark_placed(identity)
            txn.commit()

        return cell
