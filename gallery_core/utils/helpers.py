"""
@description 通用工具函数
@responsibility 提供路径规范化、上级路径展开和 Redis 匹配模式转义
"""

from __future__ import annotations

import os
import re
from typing import Optional

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def normalize_relative_path(path: str) -> str:
    """
    规范化为以 / 分隔、无首尾斜杠的相对路径

    Examples:
        >>> normalize_relative_path("/x//y/z.jpg/")
        'x/y/z.jpg'
    """
    if not path:
        return ""
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts)


def relative_to_root(root: str, absolute_path: str) -> Optional[str]:
    """
    计算绝对路径相对媒体根目录的路径

    Returns:
        以 / 分隔的相对路径；路径不在根目录内或就是根目录本身时返回 None
    """
    root_abs = os.path.abspath(root)
    target_abs = os.path.abspath(absolute_path)
    try:
        relative = os.path.relpath(target_abs, root_abs)
    except ValueError:
        # Windows 下跨盘符
        return None

    if relative == "." or relative == ".." or relative.startswith(".." + os.sep):
        return None
    return normalize_relative_path(relative)


def resolve_under_root(root: str, relative_path: str) -> Optional[str]:
    """将相对路径解析为根目录下的绝对路径，越界时返回 None"""
    root_abs = os.path.abspath(root)
    target = os.path.abspath(os.path.join(root_abs, relative_path.lstrip("/\\")))
    if target != root_abs and not target.startswith(root_abs + os.sep):
        return None
    return target


def ancestor_paths(item_path: str) -> list[str]:
    """
    返回从最上级目录到条目自身的全部路径

    Examples:
        >>> ancestor_paths("x/y/z.jpg")
        ['x', 'x/y', 'x/y/z.jpg']
    """
    parts = normalize_relative_path(item_path).split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts) + 1) if parts[i - 1]]


def parent_directory(path: str) -> str:
    """返回父目录相对路径，顶层条目的父目录为空字符串"""
    normalized = normalize_relative_path(path)
    if "/" not in normalized:
        return ""
    return normalized.rsplit("/", 1)[0]


def escape_glob(value: str) -> str:
    """转义 Redis SCAN MATCH 模式中的特殊字符"""
    return _GLOB_SPECIAL.sub(r"\\\1", value)
