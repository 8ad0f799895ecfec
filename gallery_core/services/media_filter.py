"""
@description 媒体文件分类
@responsibility 根据扩展名判断文件为照片、视频或非媒体文件
"""

from typing import Optional

PHOTO_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "webp", "gif"})
VIDEO_EXTENSIONS = frozenset({"mp4", "webm", "mov"})


def _extension(filename: str) -> str:
    # 提取文件扩展名（最后一个点之后的部分）
    filename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def is_photo_file(filename: str) -> bool:
    return _extension(filename) in PHOTO_EXTENSIONS


def is_video_file(filename: str) -> bool:
    return _extension(filename) in VIDEO_EXTENSIONS


def classify_media(filename: str) -> Optional[str]:
    """
    判断文件类型

    Args:
        filename: 文件名或路径

    Returns:
        "photo" / "video"，非媒体文件返回 None
    """
    extension = _extension(filename)
    if extension in PHOTO_EXTENSIONS:
        return "photo"
    if extension in VIDEO_EXTENSIONS:
        return "video"
    return None
