"""
@description 浏览历史模型
@responsibility 记录每个用户对条目及其所有上级目录的最近查看时间
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, String

from gallery_core.core.database import Base


class ViewHistory(Base):
    __tablename__ = "view_history"

    user_id = Column(String(255), primary_key=True)
    item_path = Column(String(4096), primary_key=True)
    viewed_at = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index("idx_view_history_user_id", "user_id"),
        Index("idx_view_history_viewed_at", "viewed_at"),
    )
