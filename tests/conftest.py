"""
@description 测试公共夹具
@responsibility 提供内存键值存储、临时 SQLite 索引库和示例媒体目录
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from gallery_core.core.database import init_db


def _glob_to_regex(pattern: str) -> re.Pattern:
    """Redis 风格 glob（支持 * ? 与反斜杠转义）转正则"""
    out = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if c == "*":
            out.append(".*")
        elif c == "?":
            out.append(".")
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z", re.S)


class MemoryKeyValueStore:
    """KeyValueStore 的内存实现，记录写入时的 TTL 供断言"""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def scan(self, pattern: str) -> list[str]:
        regex = _glob_to_regex(pattern)
        return [k for k in self.data if regex.match(k)]

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                self.ttls.pop(key, None)
                deleted += 1
        return deleted

    async def delete_pattern(self, pattern: str) -> int:
        return await self.delete(*await self.scan(pattern))


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """临时文件 SQLite 索引库（已建表，含 items_fts）"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gallery.db'}", echo=False)
    await init_db(engine)
    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


def _touch(path: Path, content: bytes = b"data") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


@pytest.fixture
def media_root(tmp_path) -> Path:
    """
    示例媒体目录:

        photos/
          .dot.jpg          隐藏文件
          .hidden/z.jpg     隐藏目录
          @eaDir/t.jpg      系统目录
          a/
            @eaDir/thumb.jpg
            b/y.png
            clip.mp4
            notes.txt       非媒体文件
            x.jpg
          top.gif
    """
    root = tmp_path / "photos"
    for relative in (
        ".dot.jpg",
        ".hidden/z.jpg",
        "@eaDir/t.jpg",
        "a/@eaDir/thumb.jpg",
        "a/b/y.png",
        "a/clip.mp4",
        "a/notes.txt",
        "a/x.jpg",
        "top.gif",
    ):
        _touch(root / relative)
    return root
