"""
@description 媒体条目模型
@responsibility 记录相册、照片、视频在媒体根目录下的相对路径与类型
"""

from sqlalchemy import Column, Float, Index, Integer, String

from gallery_core.core.database import Base


class Item(Base):
    __tablename__ = "items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(512), nullable=False)
    # 相对媒体根目录、以 / 分隔的路径，层级关系只通过路径前缀表达
    path = Column(String(4096), nullable=False, unique=True)
    # album / photo / video
    type = Column(String(16), nullable=False)
    # 源文件修改时间（毫秒），仅供展示
    mtime = Column(Float, nullable=True)

    __table_args__ = (
        Index("idx_items_type_path", "type", "path"),
        Index("idx_items_name", "name"),
    )
