"""
@description API 响应模型
@responsibility 定义运维接口的统一响应格式和状态数据结构
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ConsumerStatus(BaseModel):
    queue: str = Field(..., description="队列名")
    consumer: str = Field(..., description="消费者名称")
    running: bool = Field(..., description="是否运行中")


class CacheStats(BaseModel):
    size: int = Field(..., description="当前缓存项数量")
    max_size: int = Field(..., description="缓存容量")
    usage: int = Field(..., description="使用率（百分比）")


class StatusResponse(BaseModel):
    scheduler_running: bool = Field(..., description="索引调度任务是否运行中")
    index_busy: bool = Field(..., description="是否正在重建或增量更新索引")
    pending_changes: int = Field(..., description="等待处理的文件变更数")
    indexed_items: Optional[int] = Field(None, description="索引中的条目数")
    consumers: list[ConsumerStatus] = Field(default_factory=list, description="队列消费者")
    transform_cache: Optional[CacheStats] = Field(None, description="图片压缩缓存统计")


class RebuildResponse(BaseModel):
    started: bool = Field(..., description="是否执行了重建")
    count: Optional[int] = Field(None, description="处理的条目数")


class ApiResponse(BaseModel, Generic[T]):
    """统一 API 响应格式"""

    code: int = Field(..., description="响应码（0=成功，非0=错误）")
    message: str = Field(..., description="响应消息")
    data: Optional[T] = Field(None, description="响应数据")


def success_response(data: T, message: str = "操作成功") -> ApiResponse[T]:
    """创建成功响应"""
    return ApiResponse(code=0, message=message, data=data)

