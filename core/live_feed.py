"""
LiveFeed：把畫布狀態推送給所有訂閱者

- 訂閱後第一個收到的是完整的目前狀態
- 之後每次有新的 Cell commit，就推送合併後的新快照
- 每個訂閱者只有一個「最新快照」的位置：消費太慢時，中間的快照會被合併掉，
  永遠不會阻塞 commit 或其他訂閱者
- Cell 只增不減，快照以聯集合併，version 嚴格遞增
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Set
import asyncio
import logging
import threading

from core.grid_store import Cell, Coordinate, GridStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GridSnapshot:
    version: int
    cells: Mapping[Coordinate, Cell]

    @property
    def total_placed(self) -> int:
        return len(self.cells)

    def sorted_cells(self) -> List[Cell]:
        return [self.cells[coordinate] for coordinate in sorted(self.cells)]


class Subscription:
    """
    單一訂閱者的投遞通道

    同步使用：
        snapshot = subscription.get(timeout=1.0)
        for snapshot in subscription: ...

    非同步使用（subscribe 時需傳入 event loop）：
        async for snapshot in subscription: ...

    unsubscribe 之後 get() 回傳 None，迭代結束
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._cond = threading.Condition()
        self._pending: Optional[GridSnapshot] = None
        self._last_version = -1
        self._closed = False
        self._loop = loop
        self._event = asyncio.Event() if loop is not None else None

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, snapshot: GridSnapshot) -> None:
        """放入新快照（覆蓋尚未被取走的舊快照），不會阻塞"""
        with self._cond:
            if self._closed or snapshot.version <= self._last_version:
                return
            if self._pending is None or snapshot.version > self._pending.version:
                self._pending = snapshot
            self._cond.notify_all()
        self._wake()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._pending = None
            self._cond.notify_all()
        self._wake()

    def _wake(self):
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._event.set)
        except RuntimeError:
            # event loop 已關閉，訂閱者已經不在了
            pass

    def _take(self) -> GridSnapshot:
        snapshot = self._pending
        self._pending = None
        self._last_version = snapshot.version
        return snapshot

    def get(self, timeout: Optional[float] = None) -> Optional[GridSnapshot]:
        with self._cond:
            self._cond.wait_for(lambda: self._pending is not None or self._closed, timeout)
            if self._closed or self._pending is None:
                return None
            return self._take()

    def __iter__(self):
        while True:
            snapshot = self.get()
            if snapshot is None:
                return
            yield snapshot

    async def next(self) -> Optional[GridSnapshot]:
        if self._event is None:
            raise RuntimeError("Subscription was not bound to an event loop")
        while True:
            with self._cond:
                if self._closed:
                    return None
                if self._pending is not None:
                    return self._take()
                self._event.clear()
            await self._event.wait()

    def __aiter__(self):
        return self

    async def __anext__(self) -> GridSnapshot:
        snapshot = await self.next()
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot


class LiveFeed:
    """把 GridStore 的 commit 轉成快照並投遞給所有訂閱者"""

    def __init__(self, store: GridStore):
        self._store = store
        self._lock = threading.Lock()
        self._cells: Dict[Coordinate, Cell] = {}
        self._version = 0
        self._snapshot = GridSnapshot(version=0, cells=MappingProxyType({}))
        self._loaded = False
        self._subscriptions: Set[Subscription] = set()
        store.add_commit_listener(self._on_commit)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _merge(self, cells) -> bool:
        added = False
        for cell in cells:
            if cell.coordinate not in self._cells:
                self._cells[cell.coordinate] = cell
                added = True
        if added:
            self._version += 1
            self._snapshot = GridSnapshot(
                version=self._version,
                cells=MappingProxyType(dict(self._cells)),
            )
        return added

    def _ensure_loaded(self):
        # 呼叫者需持有 self._lock
        if self._loaded:
            return
        cells = self._store.list_cells()
        self._merge(cells)
        self._loaded = True
        logger.info(f"Live feed loaded {len(cells)} cells from store")

    def _on_commit(self, cells: List[Cell]) -> None:
        with self._lock:
            if not self._merge(cells):
                return
            snapshot = self._snapshot
            for subscription in self._subscriptions:
                subscription.offer(snapshot)

    def current_snapshot(self) -> GridSnapshot:
        with self._lock:
            self._ensure_loaded()
            return self._snapshot

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        """
        訂閱畫布狀態

        參數：
            loop: 要以 async for 消費時，傳入目前的 event loop

        返回：
            Subscription（第一個快照 = 目前完整狀態，已經在裡面了）
        """
        subscription = Subscription(loop=loop)
        with self._lock:
            self._ensure_loaded()
            self._subscriptions.add(subscription)
            subscription.offer(self._snapshot)
        logger.debug(f"New live feed subscriber ({len(self._subscriptions)} total)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.discard(subscription)
        subscription.close()

    def close(self) -> None:
        self._store.remove_commit_listener(self._on_commit)
        with self._lock:
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.close()
