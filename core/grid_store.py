"""
GridStore：畫布的權威狀態

職責：
1. 保存所有已佔用的格子（Cell）與參與者紀錄（ParticipantRecord）
2. 只透過 transaction 對外開放修改：先讀、再 stage、最後 compare-and-commit
3. commit 成功後，把新的 Cell 推送給所有 commit listener（LiveFeed）

並發模型：
- 讀取時在支援的資料庫上加行級鎖（core.locks）
- commit 時重新檢查讀取時的前提：
    * 讀到「不存在」的 Cell / Participant → 以 INSERT 寫入，主鍵衝突即 Conflict
    * 讀到 has_placed=False 的 Participant → 條件式 UPDATE，影響 0 筆即 Conflict
- 任何失敗都會 rollback 整個 transaction，不會留下部分寫入
"""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional
import logging
import threading

from sqlalchemy import text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import Base, create_session_factory, transactional
from models import Pixel, Participant
from core.locks import with_participant_lock, with_pixel_lock
from core.exceptions import (
    Conflict,
    DuplicateStagedWrite,
    StoreUnavailable,
    TransactionClosed,
)

logger = logging.getLogger(__name__)

# PostgreSQL serialization_failure / deadlock_detected
_RETRYABLE_PGCODES = {"40001", "40P01"}

_UNREAD = object()


@dataclass(frozen=True, order=True)
class Coordinate:
    x: int
    y: int

    @property
    def key(self) -> str:
        return f"{self.x}-{self.y}"


@dataclass(frozen=True)
class Cell:
    """已被佔用的格子，建立後不可修改"""
    coordinate: Coordinate
    color: str
    owner_identity: str
    placed_at: datetime

    @classmethod
    def from_row(cls, pixel: Pixel) -> "Cell":
        return cls(
            coordinate=Coordinate(pixel.x, pixel.y),
            color=pixel.color,
            owner_identity=pixel.placed_by,
            placed_at=pixel.placed_at,
        )


@dataclass(frozen=True)
class ParticipantRecord:
    identity: str
    has_placed: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, participant: Participant) -> "ParticipantRecord":
        return cls(
            identity=participant.identity,
            has_placed=bool(participant.has_placed),
            created_at=participant.created_at,
        )


CommitListener = Callable[[List[Cell]], None]


def _is_lock_contention(error: OperationalError) -> bool:
    orig = getattr(error, "orig", None)
    if getattr(orig, "pgcode", None) in _RETRYABLE_PGCODES:
        return True
    return "locked" in str(orig).lower()


@contextmanager
def _store_errors(action: str):
    """把 driver / pool 層的錯誤轉成 StoreUnavailable"""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Grid store failure while {action}: {e}", exc_info=True)
        raise StoreUnavailable(f"Grid store unavailable while {action}") from e


@transactional
def _insert_participant_if_absent(db: Session, identity: str) -> bool:
    if db.get(Participant, identity) is not None:
        return False
    db.add(Participant(identity=identity, has_placed=False))
    try:
        db.flush()
    except IntegrityError:
        # 另一個請求剛好先建立了
        db.rollback()
        return False
    return True


class GridTransaction:
    """
    一次原子性的「讀取 → stage → commit」範圍

    用法：
        with store.begin_transaction() as txn:
            participant = txn.read_participant(identity)
            cell = txn.read_cell(coordinate)
            txn.write_cell(coordinate, new_cell)
            txn.mark_placed(identity)
            txn.commit()

    離開 with 區塊時若尚未 commit，會自動 abort（rollback）
    """

    def __init__(self, store: "GridStore", session: Session):
        self._store = store
        self._session = session
        # identity -> 讀取時的 has_placed（None 表示不存在）
        self._participant_reads: Dict[str, Optional[bool]] = {}
        self._staged_cells: Dict[Coordinate, Cell] = {}
        self._staged_marks: List[str] = []
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if not self._closed:
            self.abort()
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self):
        if self._closed:
            raise TransactionClosed("Transaction already finished")

    def read_participant(self, identity: str) -> Optional[ParticipantRecord]:
        self._ensure_open()
        with _store_errors("reading participant"):
            row = with_participant_lock(identity, self._session).first()

        self._participant_reads[identity] = None if row is None else bool(row.has_placed)
        return None if row is None else ParticipantRecord.from_row(row)

    def read_cell(self, coordinate: Coordinate) -> Optional[Cell]:
        self._ensure_open()
        with _store_errors("reading cell"):
            row = with_pixel_lock(coordinate.x, coordinate.y, self._session).first()
        return None if row is None else Cell.from_row(row)

    def write_cell(self, coordinate: Coordinate, cell: Cell) -> None:
        self._ensure_open()
        if coordinate in self._staged_cells:
            raise DuplicateStagedWrite(coordinate.x, coordinate.y)
        if cell.coordinate != coordinate:
            raise ValueError(f"Cell coordinate {cell.coordinate} does not match {coordinate}")
        self._staged_cells[coordinate] = cell

    def mark_placed(self, identity: str) -> None:
        self._ensure_open()
        if identity not in self._staged_marks:
            self._staged_marks.append(identity)

    def commit(self) -> List[Cell]:
        """
        套用所有 stage 的寫入

        返回：
            本次新增的 Cell 列表

        異常：
            Conflict: 讀取後有其他 transaction 先 commit 了相同的 identity / 座標
            StoreUnavailable: 底層儲存錯誤
        """
        self._ensure_open()
        try:
            return self._store._commit(self)
        finally:
            self._close()

    def abort(self) -> None:
        if self._closed:
            return
        try:
            self._session.rollback()
        finally:
            self._close()

    def _close(self):
        self._closed = True
        self._session.close()

    def _apply(self) -> None:
        """把 stage 的寫入送進 session（由 GridStore._commit 在鎖內呼叫）"""
        session = self._session

        for identity in self._staged_marks:
            read_state = self._participant_reads.get(identity, _UNREAD)

            if read_state is True:
                continue

            if read_state is None:
                session.add(Participant(identity=identity, has_placed=True))
                continue

            stmt = update(Participant).where(Participant.identity == identity)
            if read_state is False:
                stmt = stmt.where(Participant.has_placed == False)  # noqa: E712
            result = session.execute(stmt.values(has_placed=True))

            if result.rowcount == 1:
                continue
            if read_state is False:
                raise Conflict(f"Participant {identity} changed since read")
            # 沒讀過且不存在：merge 語意，直接建立
            session.add(Participant(identity=identity, has_placed=True))

        for coordinate, cell in self._staged_cells.items():
            session.add(Pixel(
                x=coordinate.x,
                y=coordinate.y,
                color=cell.color,
                placed_by=cell.owner_identity,
                placed_at=cell.placed_at,
            ))

        session.flush()


class GridStore:
    """畫布狀態的唯一擁有者，其他元件只能透過 transaction 修改"""

    def __init__(
        self,
        engine: Engine,
        grid_width: int,
        grid_height: int,
        session_factory: Optional[sessionmaker] = None,
    ):
        if grid_width <= 0 or grid_height <= 0:
            raise ValueError(f"Grid size must be positive, got {grid_width}x{grid_height}")

        self.engine = engine
        self.grid_width = grid_width
        self.grid_height = grid_height
        self._session_factory = session_factory or create_session_factory(engine)
        self._listeners: List[CommitListener] = []
        # 同一個 process 內所有 commit（含不相交的 identity / 座標）都在這裡排隊，
        # 包含 SQLite busy wait；commit + publish 在同一個臨界區內，listener 看到的順序 = commit 順序
        self._commit_lock = threading.Lock()

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.grid_width and 0 <= y < self.grid_height

    def add_commit_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    def remove_commit_listener(self, listener: CommitListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ============ Transaction ============

    def begin_transaction(self) -> GridTransaction:
        """
        開啟一個 transaction

        會先從連線池取得連線並 ping 一次；
        連線池等待超過 store_acquire_timeout 或資料庫無法連線 → StoreUnavailable
        """
        session = self._session_factory()
        try:
            session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            session.close()
            logger.error(f"Failed to begin grid transaction: {e}", exc_info=True)
            raise StoreUnavailable("Grid store unavailable") from e

        return GridTransaction(self, session)

    def _commit(self, txn: GridTransaction) -> List[Cell]:
        session = txn._session
        with self._commit_lock:
            try:
                txn._apply()
                session.commit()
            except Conflict:
                session.rollback()
                raise
            except IntegrityError as e:
                session.rollback()
                logger.warning(f"Commit conflict (unique key): {e.orig}")
                raise Conflict("Concurrent transaction claimed the same identity or cell") from e
            except OperationalError as e:
                session.rollback()
                if _is_lock_contention(e):
                    logger.warning(f"Commit conflict (lock contention): {e.orig}")
                    raise Conflict("Grid store lock contention") from e
                logger.error(f"Commit failed: {e}", exc_info=True)
                raise StoreUnavailable("Grid store unavailable during commit") from e
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Commit failed: {e}", exc_info=True)
                raise StoreUnavailable("Grid store unavailable during commit") from e

            committed = list(txn._staged_cells.values())
            if committed:
                self._publish(committed)

        return committed

    def _publish(self, cells: List[Cell]) -> None:
        for listener in list(self._listeners):
            try:
                listener(cells)
            except Exception as e:
                # commit 已經生效，listener 的錯誤不能回頭影響呼叫者
                logger.error(f"Commit listener {listener!r} failed: {e}", exc_info=True)

    # ============ 交易外的讀取 / 註冊 ============

    def register_participant(self, identity: str) -> ParticipantRecord:
        """
        第一次引用時建立參與者（has_placed=False），已存在則不動

        返回：
            目前的 ParticipantRecord
        """
        with _store_errors("registering participant"):
            db = self._session_factory()
            try:
                if _insert_participant_if_absent(db, identity):
                    logger.info(f"Registered participant {identity}")
                # 重新從資料庫讀取，回傳的欄位與其他讀取路徑一致
                db.expire_all()
                row = db.get(Participant, identity)
                return ParticipantRecord.from_row(row)
            finally:
                db.close()

    def get_participant(self, identity: str) -> Optional[ParticipantRecord]:
        with _store_errors("reading participant"):
            db = self._session_factory()
            try:
                row = db.get(Participant, identity)
                return None if row is None else ParticipantRecord.from_row(row)
            finally:
                db.close()

    def get_cell(self, coordinate: Coordinate) -> Optional[Cell]:
        with _store_errors("reading cell"):
            db = self._session_factory()
            try:
                row = db.get(Pixel, (coordinate.x, coordinate.y))
                return None if row is None else Cell.from_row(row)
            finally:
                db.close()

    def list_cells(self) -> List[Cell]:
        with _store_errors("listing cells"):
            db = self._session_factory()
            try:
                rows = db.query(Pixel).order_by(Pixel.y, Pixel.x).all()
                return [Cell.from_row(row) for row in rows]
            finally:
                db.close()

    def count_cells(self) -> int:
        with _store_errors("counting cells"):
            db = self._session_factory()
            try:
                return db.query(Pixel).count()
            finally:
                db.close()
