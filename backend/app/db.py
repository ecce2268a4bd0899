"""
SQLite 引擎与会话

API 请求通过 `get_db` 依赖获得会话；流水线在线程池中执行条件更新，
使用 `get_session_factory` 返回的工厂按需创建会话。
"""

from typing import Callable, Iterator

from sqlmodel import Session, SQLModel, create_engine

from .config import settings

# 状态写入在 asyncio.to_thread 的工作线程中执行，连接需要允许跨线程使用
engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.SQLITE_ECHO,
    connect_args={"check_same_thread": False},
)

# 列表接口按组织筛选并按创建时间倒序
_VIDEO_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_video_org_created ON video (organization_id, created_at DESC)",
)


def create_db_and_tables() -> None:
    """建表并补齐复合索引，可重复执行"""
    SQLModel.metadata.create_all(engine)

    with engine.begin() as conn:
        for ddl in _VIDEO_INDEXES:
            conn.exec_driver_sql(ddl)


def get_db() -> Iterator[Session]:
    """FastAPI 依赖：每个请求一个会话，请求结束后关闭"""
    with Session(engine) as session:
        yield session


def get_session_factory() -> Callable[[], Session]:
    """供后台协程使用的会话工厂，调用一次得到一个新会话"""
    return lambda: Session(engine)
