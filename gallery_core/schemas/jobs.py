"""
@description 任务与事件数据模型
@responsibility 定义队列任务负载、任务结果以及文件系统变更事件的结构
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ChangeType = Literal["add", "addDir", "unlink", "unlinkDir"]


class ChangeEvent(BaseModel):
    """文件系统变更事件（绝对路径）"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: ChangeType = Field(..., description="变更类型")
    file_path: str = Field(..., alias="filePath", description="绝对路径")


class AIJobConfig(BaseModel):
    """任务携带的 AI 服务配置"""

    url: Optional[str] = Field(None, description="服务地址")
    key: Optional[str] = Field(None, description="API 密钥")
    model: Optional[str] = Field(None, description="模型 ID")
    prompt: Optional[str] = Field(None, description="提示词")


class CaptionJob(BaseModel):
    """AI 描述任务"""

    model_config = ConfigDict(populate_by_name=True)

    image_path: str = Field(..., alias="imagePath", description="相对媒体根目录的图片路径")
    ai_config: AIJobConfig = Field(
        default_factory=AIJobConfig, alias="aiConfig", description="AI 配置"
    )


class VideoJob(BaseModel):
    """视频优化任务"""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(..., alias="filePath", description="视频绝对路径")


class CaptionResult(BaseModel):
    success: bool = Field(..., description="是否成功")
    caption: str = Field(..., description="生成的描述")


class VideoResult(BaseModel):
    success: bool = Field(..., description="是否成功（跳过也视为成功）")
    path: str = Field(..., description="视频绝对路径")
    status: Optional[str] = Field(None, description="处理状态")
    error: Optional[str] = Field(None, description="失败原因")


class HistoryJob(BaseModel):
    """浏览历史任务"""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1, description="用户 ID")
    item_path: str = Field(..., alias="path", min_length=1, description="相对媒体根目录的条目路径")


class HistoryResult(BaseModel):
    success: bool = Field(..., description="是否成功")
    cleared_cache_keys: int = Field(0, description="清除的浏览列表缓存键数量")
