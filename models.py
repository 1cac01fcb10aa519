"""
ORM 資料表

- pixels：已被佔用的格子（x, y 為複合主鍵，同一座標只能存在一筆）
- participants：匿名參與者（identity 為主鍵，has_placed 一旦為 True 就不會回到 False）

主鍵本身就是 commit 時的衝突偵測：兩個併發 transaction 都讀到「不存在」並嘗試插入，
後 commit 的一方會得到 IntegrityError。
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Pixel(Base):
    __tablename__ = "pixels"

    x = Column(Integer, primary_key=True, autoincrement=False)
    y = Column(Integer, primary_key=True, autoincrement=False)
    color = Column(String, nullable=False)
    placed_by = Column(String, nullable=False, index=True)
    placed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Pixel ({self.x}, {self.y}) {self.color} by {self.placed_by}>"


class Participant(Base):
    __tablename__ = "participants"

    identity = Column(String, primary_key=True)
    has_placed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Participant {self.identity} has_placed={self.has_placed}>"
