"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

在 PostgreSQL 上使用 SELECT ... FOR UPDATE 實現行級鎖；
SQLite 不支援 FOR UPDATE（會被忽略），改由主鍵衝突與條件式 UPDATE 在 commit 時偵測
"""
from sqlalchemy.orm import Session, Query

from models import Pixel, Participant


def with_participant_lock(identity: str, db: Session) -> Query:
    """
    鎖定一個 Participant（行級鎖）

    使用場景：
    - 檢查 has_placed 並準備將它設為 True 時
    - 確保同一個 identity 的兩個請求不會同時通過檢查

    範例：
        participant = with_participant_lock(identity, db).first()
        if participant and participant.has_placed:
            raise AlreadyPlaced(identity)

    注意：
        - row 不存在時鎖不到任何東西，並發插入由主鍵衝突偵測
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Participant).filter(
        Participant.identity == identity
    ).with_for_update(nowait=False)


def with_pixel_lock(x: int, y: int, db: Session) -> Query:
    """
    鎖定一個 Pixel（行級鎖）

    Pixel 一旦存在就不會再被修改，鎖主要讓讀取與 commit 在同一個 transaction 順序內

    參數：
        x, y: 座標
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 來取得結果）
    """
    return db.query(Pixel).filter(
        Pixel.x == x,
        Pixel.y == y
    ).with_for_update(nowait=False)
