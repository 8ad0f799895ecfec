"""
@description 索引同步服务核心逻辑
@responsibility 全量重建与增量更新 items / items_fts，保证两表在同一事务内一致
"""

import asyncio
import itertools
import os
from typing import Iterable, Iterator, Optional, Union

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from gallery_core.schemas.jobs import ChangeEvent
from gallery_core.services.fs_walker import DEFAULT_RESERVED_DIRS, walk_media
from gallery_core.services.media_filter import classify_media
from gallery_core.utils.helpers import relative_to_root
from gallery_core.utils.search import build_match_query, path_to_search_text, tokenize

INSERT_ITEM_SQL = text(
    "INSERT OR IGNORE INTO items (name, path, type, mtime) "
    "VALUES (:name, :path, :type, :mtime) RETURNING id"
)
INSERT_FTS_SQL = text("INSERT INTO items_fts (rowid, name) VALUES (:rowid, :name)")

# 层级关系由路径表达，目录删除通过显式前缀比较级联到所有后代
DELETE_FTS_BY_PREFIX_SQL = text(
    "DELETE FROM items_fts WHERE rowid IN ("
    "SELECT id FROM items WHERE path = :path "
    "OR substr(path, 1, length(:prefix)) = :prefix)"
)
DELETE_ITEMS_BY_PREFIX_SQL = text(
    "DELETE FROM items WHERE path = :path "
    "OR substr(path, 1, length(:prefix)) = :prefix"
)


class IndexSyncError(Exception):
    """索引重建或增量更新失败，事务已回滚"""


def _take(iterator: Iterator[dict], size: int) -> list[dict]:
    return list(itertools.islice(iterator, size))


class IndexSynchronizer:
    """索引同步器：调用方负责保证重建与增量更新不会并发执行"""

    def __init__(
        self,
        session_factory,
        photos_dir: str,
        reserved_dirs: Iterable[str] = DEFAULT_RESERVED_DIRS,
        batch_size: int = 1000,
    ):
        self._session_factory = session_factory
        self._photos_dir = photos_dir
        self._reserved_dirs = tuple(reserved_dirs)
        self._batch_size = batch_size

    async def rebuild(self) -> int:
        """
        全量重建索引

        Returns:
            处理的条目总数

        Raises:
            IndexSyncError: 任意步骤失败，数据库保持重建前的状态
        """
        logger.info("开始执行索引重建任务...")
        count = 0

        async with self._session_factory() as session:
            try:
                if not os.path.isdir(self._photos_dir):
                    raise FileNotFoundError(f"媒体目录不存在: {self._photos_dir}")

                await session.execute(text("DELETE FROM items_fts"))
                await session.execute(text("DELETE FROM items"))

                walker = walk_media(self._photos_dir, self._reserved_dirs)
                while True:
                    # 目录遍历是阻塞 I/O，分批放到线程中执行
                    batch = await asyncio.to_thread(_take, walker, self._batch_size)
                    if not batch:
                        break
                    for record in batch:
                        await self._insert_item(
                            session,
                            name=record["name"],
                            relative_path=record["path"],
                            item_type=record["type"],
                            mtime=record.get("mtime"),
                        )
                    count += len(batch)
                    logger.info(f"已处理 {count} 个条目...")

                await session.commit()
            except Exception as e:
                logger.error(f"重建索引失败: {e}")
                await self._rollback(session, "索引重建")
                raise IndexSyncError(f"重建索引失败: {e}") from e

        logger.info(f"索引重建完成，共处理 {count} 个条目。")
        return count

    async def apply_changes(
        self, changes: list[Union[ChangeEvent, dict]]
    ) -> int:
        """
        在单个事务内应用一批文件系统变更

        Args:
            changes: 有序变更列表（add / addDir / unlink / unlinkDir，绝对路径）

        Returns:
            实际处理的变更数量

        Raises:
            IndexSyncError: 任意变更失败，整批回滚
        """
        if not changes:
            return 0

        events = [
            c if isinstance(c, ChangeEvent) else ChangeEvent.model_validate(c)
            for c in changes
        ]
        logger.info(f"开始处理 {len(events)} 个索引变更...")
        applied = 0

        async with self._session_factory() as session:
            try:
                for event in events:
                    if await self._apply_one(session, event):
                        applied += 1
                await session.commit()
            except Exception as e:
                logger.error(f"处理索引变更失败: {e}")
                await self._rollback(session, "变更处理")
                raise IndexSyncError(f"处理索引变更失败: {e}") from e

        logger.info(f"索引增量更新完成，应用了 {applied} 个变更。")
        return applied

    async def get_all_media_items(self) -> list[dict]:
        """查询所有照片和视频的路径与类型"""
        async with self._session_factory() as session:
            result = await session.execute(
                text("SELECT path, type FROM items WHERE type IN ('photo', 'video')")
            )
            return [{"path": row.path, "type": row.type} for row in result]

    async def count_items(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(text("SELECT COUNT(1) FROM items"))
            return result.scalar_one()

    async def search(self, query: str, limit: int = 50, offset: int = 0) -> list[dict]:
        """
        基于 n-gram 的子串搜索，相册排在前面
        """
        match_query = build_match_query(query)
        if not match_query:
            return []

        async with self._session_factory() as session:
            result = await session.execute(
                text(
                    "SELECT i.id, i.name, i.path, i.type, i.mtime "
                    "FROM items_fts JOIN items i ON items_fts.rowid = i.id "
                    "WHERE items_fts MATCH :query "
                    "ORDER BY CASE i.type WHEN 'album' THEN 0 ELSE 1 END, "
                    "items_fts.rank, i.path "
                    "LIMIT :limit OFFSET :offset"
                ),
                {"query": match_query, "limit": limit, "offset": offset},
            )
            return [dict(row._mapping) for row in result]

    async def _apply_one(self, session: AsyncSession, event: ChangeEvent) -> bool:
        relative_path = relative_to_root(self._photos_dir, event.file_path)
        if relative_path is None:
            logger.warning(f"变更路径不在媒体目录内，已忽略: {event.file_path}")
            return False

        if any(part in self._reserved_dirs for part in relative_path.split("/")):
            logger.debug(f"系统目录中的变更，已忽略: {relative_path}")
            return False

        if event.type in ("add", "addDir"):
            name = os.path.basename(relative_path)
            if event.type == "addDir":
                item_type = "album"
            else:
                item_type = classify_media(name)
                if item_type is None:
                    logger.debug(f"非媒体文件，已忽略: {relative_path}")
                    return False

            if await self._insert_item(session, name, relative_path, item_type):
                logger.info(f"索引新增: {relative_path}")
            return True

        await session.execute(
            DELETE_FTS_BY_PREFIX_SQL,
            {"path": relative_path, "prefix": relative_path + "/"},
        )
        await session.execute(
            DELETE_ITEMS_BY_PREFIX_SQL,
            {"path": relative_path, "prefix": relative_path + "/"},
        )
        logger.info(f"索引删除: {relative_path}")
        return True

    async def _insert_item(
        self,
        session: AsyncSession,
        name: str,
        relative_path: str,
        item_type: str,
        mtime: Optional[float] = None,
    ) -> bool:
        """插入条目，仅在确实新增时写入影子行；返回是否新增"""
        result = await session.execute(
            INSERT_ITEM_SQL,
            {"name": name, "path": relative_path, "type": item_type, "mtime": mtime},
        )
        row_id = result.scalar_one_or_none()
        if row_id is not None:
            await self._insert_shadow_row(session, row_id, relative_path)
            return True

        # 路径已存在：类型变化时（如目录被同名文件替换）刷新类型和影子行
        existing = await session.execute(
            text("SELECT id, type FROM items WHERE path = :path"),
            {"path": relative_path},
        )
        row = existing.one_or_none()
        if row is not None and row.type != item_type:
            logger.info(f"条目类型变化: {relative_path} {row.type} -> {item_type}")
            await session.execute(
                text("UPDATE items SET type = :type, name = :name WHERE id = :id"),
                {"type": item_type, "name": name, "id": row.id},
            )
            await session.execute(
                text("DELETE FROM items_fts WHERE rowid = :rowid"), {"rowid": row.id}
            )
            await self._insert_shadow_row(session, row.id, relative_path)
        return False

    async def _insert_shadow_row(
        self, session: AsyncSession, row_id: int, relative_path: str
    ) -> None:
        tokenized = tokenize(path_to_search_text(relative_path), 1, 2)
        await session.execute(INSERT_FTS_SQL, {"rowid": row_id, "name": tokenized})

    async def _rollback(self, session: AsyncSession, operation: str) -> None:
        try:
            await session.rollback()
        except Exception as rb_error:
            logger.error(f"{operation}事务回滚失败: {rb_error}")
