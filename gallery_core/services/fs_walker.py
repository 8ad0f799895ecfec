"""
@description 媒体目录遍历
@responsibility 惰性深度优先遍历媒体根目录，先产出目录再产出其子项；只跳过系统目录，隐藏项照常收录
"""

import os
from typing import Iterable, Iterator

from loguru import logger

from gallery_core.services.media_filter import classify_media

DEFAULT_RESERVED_DIRS = ("@eaDir",)


def walk_media(
    root: str, reserved_dirs: Iterable[str] = DEFAULT_RESERVED_DIRS
) -> Iterator[dict]:
    """
    遍历媒体目录

    Args:
        root: 媒体根目录
        reserved_dirs: 需要整体跳过的系统目录名

    Yields:
        {"type", "path", "name", "mtime"}，path 为相对根目录、以 / 分隔的路径
    """
    reserved = frozenset(reserved_dirs)
    yield from _walk(root, "", reserved)


def _walk(directory: str, relative: str, reserved: frozenset) -> Iterator[dict]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        # 只终止当前子树，不影响兄弟目录
        logger.error(f"遍历目录失败: {directory}, 错误: {e}")
        return

    for entry in entries:
        entry_relative = f"{relative}/{entry.name}" if relative else entry.name

        try:
            is_dir = entry.is_dir(follow_symlinks=False)
            is_file = not is_dir and entry.is_file()
        except OSError as e:
            logger.warning(f"读取条目类型失败: {entry.path}, 错误: {e}")
            continue

        if is_dir:
            if entry.name in reserved:
                continue
            yield {
                "type": "album",
                "path": entry_relative,
                "name": entry.name,
                "mtime": _mtime_ms(entry),
            }
            yield from _walk(entry.path, entry_relative, reserved)
        elif is_file:
            media_type = classify_media(entry.name)
            if media_type is None:
                continue
            yield {
                "type": media_type,
                "path": entry_relative,
                "name": entry.name,
                "mtime": _mtime_ms(entry),
            }


def _mtime_ms(entry: os.DirEntry) -> float:
    try:
        return entry.stat().st_mtime * 1000
    except OSError:
        return 0.0
