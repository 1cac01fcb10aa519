from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./pixel_reveal.db"

    # 畫布尺寸與揭曉門檻（門檻未設定時 = 整張畫布）
    grid_width: int = 24
    grid_height: int = 24
    reveal_threshold: Optional[int] = None

    # PlaceCell 衝突重試
    placement_max_attempts: int = 3
    placement_retry_backoff: float = 0.01

    # 取得 transaction 的等待上限（秒）
    store_acquire_timeout: float = 5.0

    presence_ttl_seconds: float = 30.0
    allowed_origins: List[str] = ["*"]

    class Config:
        env_file = ".env"

    @property
    def effective_reveal_threshold(self) -> int:
        if self.reveal_threshold is None:
            return self.grid_width * self.grid_height
        return self.reveal_threshold


@lru_cache()
def get_settings():
    return Settings()


def create_db_engine(database_url: str, acquire_timeout: float = 5.0) -> Engine:
    """
    依照 database_url 建立 Engine

    SQLite 需要特殊設定：
        - check_same_thread=False：FastAPI 的 threadpool 會在不同執行緒使用連線
        - timeout：寫入鎖被佔用時最多等待的秒數（busy timeout）

    pool_timeout 限制從連線池取得連線的等待時間，超過即視為 StoreUnavailable
    """
    is_sqlite = database_url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": acquire_timeout} if is_sqlite else {}

    options = {"connect_args": connect_args, "pool_pre_ping": True}
    # in-memory SQLite 使用 SingletonThreadPool，不接受 pool_timeout
    in_memory = is_sqlite and (":memory:" in database_url or database_url.rstrip("/") == "sqlite:")
    if not in_memory:
        options["pool_timeout"] = acquire_timeout

    return create_engine(database_url, **options)


def create_session_factory(engine: Engine) -> sessionmaker:
    # expire_on_commit=False：commit 後仍可讀取 row 的欄位（轉成不可變的 Cell）
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


settings = get_settings()

engine = create_db_engine(settings.database_url, settings.store_acquire_timeout)
SessionLocal = create_session_factory(engine)
Base = declarative_base()


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def some_write(db: Session, ...):
            db.add(...)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 異常會被重新拋出（讓上層處理）

    注意：
        - 第一個參數必須是 db: Session
        - 不要在函式內手動 commit（decorator 會處理）
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # 找出 db session（可能在 args 或 kwargs）
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
