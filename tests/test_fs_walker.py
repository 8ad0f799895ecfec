"""
@description 媒体目录遍历测试
@responsibility 验证遍历顺序、系统目录过滤、隐藏项收录和异常子树处理
"""

import os

from gallery_core.services.fs_walker import walk_media


class TestWalkMedia:
    """测试目录遍历"""

    def test_walk_yields_media_in_order(self, media_root):
        """目录先于其子项产出，系统目录和非媒体文件被跳过"""
        records = list(walk_media(str(media_root)))

        assert [r["path"] for r in records] == [
            ".dot.jpg",
            ".hidden",
            ".hidden/z.jpg",
            "a",
            "a/b",
            "a/b/y.png",
            "a/clip.mp4",
            "a/x.jpg",
            "top.gif",
        ]
        types = {r["path"]: r["type"] for r in records}
        assert types["a"] == "album"
        assert types["a/clip.mp4"] == "video"
        assert types["top.gif"] == "photo"

    def test_walk_includes_hidden_entries(self, media_root):
        """以点开头的文件和目录照常收录，只有系统目录被整体跳过"""
        types = {r["path"]: r["type"] for r in walk_media(str(media_root))}

        assert types[".dot.jpg"] == "photo"
        assert types[".hidden"] == "album"
        assert types[".hidden/z.jpg"] == "photo"
        assert "@eaDir/t.jpg" not in types

    def test_walk_record_fields(self, media_root):
        """产出记录包含名称和毫秒级修改时间"""
        record = next(r for r in walk_media(str(media_root)) if r["path"] == "a/x.jpg")
        assert record["name"] == "x.jpg"
        assert record["mtime"] > 0

    def test_walk_custom_reserved_dirs(self, media_root):
        """自定义系统目录整体跳过"""
        paths = [r["path"] for r in walk_media(str(media_root), reserved_dirs=("b",))]
        assert "a/b" not in paths
        assert "a/b/y.png" not in paths
        assert "a/@eaDir/thumb.jpg" in paths

    def test_walk_unreadable_directory_skips_subtree(self, media_root, monkeypatch):
        """子目录读取失败只跳过该子树"""
        real_scandir = os.scandir

        def flaky_scandir(path):
            if str(path).endswith(os.path.join("a", "b")):
                raise PermissionError("denied")
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", flaky_scandir)
        paths = [r["path"] for r in walk_media(str(media_root))]

        assert "a/b" in paths
        assert "a/b/y.png" not in paths
        assert "top.gif" in paths

    def test_walk_missing_root(self, tmp_path):
        """根目录不存在时不产出任何记录"""
        assert list(walk_media(str(tmp_path / "missing"))) == []
