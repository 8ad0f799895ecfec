"""
@description 异步数据库连接管理
@responsibility 提供 SQLAlchemy 异步引擎、会话工厂和索引库初始化（含 FTS5 影子表）
"""

from pathlib import Path
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

DATABASE_URL = "sqlite+aiosqlite:///./data/gallery.db"

# items_fts 与 items 共用 rowid，由同步器在同一事务内维护，不依赖触发器
FTS_DDL = (
    "CREATE VIRTUAL TABLE IF NOT EXISTS items_fts "
    "USING fts5(name, tokenize = \"unicode61\")"
)

engine: Optional[AsyncEngine] = None
async_session_local: Optional[sessionmaker] = None

Base = declarative_base()


def database_url_for(db_file: Path) -> str:
    return f"sqlite+aiosqlite:///{db_file}"


def configure_database(url: str = DATABASE_URL) -> sessionmaker:
    """创建引擎和会话工厂，返回会话工厂"""
    global engine, async_session_local

    engine = create_async_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False},
    )
    async_session_local = sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return async_session_local


async def init_db(target: Optional[AsyncEngine] = None):
    """
    初始化数据库，创建所有表和全文检索影子表
    """
    # 导入所有模型，确保在 Base.metadata 中注册
    from gallery_core.models.item import Item
    from gallery_core.models.view_history import ViewHistory

    target = target or engine
    if target is None:
        raise RuntimeError("数据库尚未配置，请先调用 configure_database()")

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(FTS_DDL))


async def dispose_db() -> None:
    if engine is not None:
        await engine.dispose()
