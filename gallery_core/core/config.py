"""
@description 配置管理模块
@responsibility 加载和验证 config.yaml，支持环境变量覆盖
"""

import os
import sys
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator


class PathsConfig(BaseModel):
    """目录配置"""

    photos_dir: str = Field(..., description="媒体根目录")
    data_dir: str = Field(..., description="数据目录（数据库文件所在目录）")

    @property
    def db_file(self) -> Path:
        return Path(self.data_dir) / "gallery.db"


class RedisConfig(BaseModel):
    """Redis 配置"""

    url: str = Field(default="redis://localhost:6379", description="Redis 连接地址")


class AIConfig(BaseModel):
    """AI 描述服务默认配置（任务未携带时使用）"""

    url: str = Field(default="", description="OpenAI 兼容服务地址")
    key: str = Field(default="", description="API 密钥")
    model: str = Field(default="", description="模型 ID")
    prompt: str = Field(default="请用一段话描述这张图片的内容。", description="描述提示词")
    timeout: float = Field(default=30.0, description="单次请求超时（秒）")
    max_retries: int = Field(default=3, description="传输错误或 5xx 时的自动重试次数")


class IndexerConfig(BaseModel):
    """索引配置"""

    reserved_dirs: list[str] = Field(
        default_factory=lambda: ["@eaDir"], description="遍历时排除的系统目录"
    )
    batch_size: int = Field(default=1000, description="全量重建时每批处理的条目数")
    debounce_seconds: float = Field(default=5.0, description="文件变更防抖时间（秒）")
    max_incremental_changes: int = Field(
        default=1000, description="超过该数量的变更改为全量重建"
    )
    watch: bool = Field(default=True, description="是否监控媒体目录变化")
    write_stability_seconds: float = Field(
        default=2.0, description="新视频大小保持不变多少秒后视为写入完成"
    )

    @field_validator("batch_size", "max_incremental_changes")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("必须为正整数")
        return value


class WorkersConfig(BaseModel):
    """任务队列消费者配置"""

    caption_queue: str = Field(default="ai-caption-queue", description="AI 描述队列名")
    video_queue: str = Field(default="video-optimize-queue", description="视频优化队列名")
    history_queue: str = Field(default="view-history-queue", description="浏览历史队列名")
    concurrency: int = Field(default=1, description="每个队列的消费者数量")
    max_attempts: int = Field(default=3, description="队列层面的最大尝试次数")
    backoff_seconds: float = Field(default=5.0, description="重新入队的退避基数（秒）")
    transform_cache_size: int = Field(default=50, description="图片压缩缓存容量")
    video_max_retries: int = Field(default=3, description="视频优化失败多少次后标记永久失败")
    permanent_failure_ttl: int = Field(
        default=3600 * 24 * 7, description="永久失败标记的过期时间（秒）"
    )
    ffmpeg_bin: str = Field(default="ffmpeg", description="ffmpeg 可执行文件")


class CacheConfig(BaseModel):
    """响应缓存配置"""

    namespace: str = Field(default="route_cache", description="浏览接口缓存键前缀")


class Config(BaseModel):
    """全局配置"""

    paths: PathsConfig = Field(..., description="目录配置")
    redis: RedisConfig = Field(default_factory=RedisConfig, description="Redis 配置")
    ai: AIConfig = Field(default_factory=AIConfig, description="AI 服务配置")
    indexer: IndexerConfig = Field(default_factory=IndexerConfig, description="索引配置")
    workers: WorkersConfig = Field(default_factory=WorkersConfig, description="队列配置")
    cache: CacheConfig = Field(default_factory=CacheConfig, description="缓存配置")
    log_level: str = Field(default="INFO", description="日志级别")


def get_config_path() -> Path:
    """获取配置文件路径"""
    # 优先使用 CONFIG_PATH 环境变量，否则使用项目根目录的 config.yaml
    if config_path_str := os.environ.get("CONFIG_PATH"):
        return Path(config_path_str)
    return Path(__file__).parent.parent.parent / "config.yaml"


def load_config() -> Config:
    """加载配置文件并应用环境变量覆盖"""
    config_path = get_config_path()

    # 配置文件不存在时生成模板并退出
    if not config_path.exists():
        _generate_config_template(config_path)
        print(f"错误: 配置文件不存在: {config_path}")
        print(f"已生成配置模板: {config_path.parent / 'config.example.yaml'}")
        sys.exit(1)

    with open(config_path, encoding="utf-8") as f:
        config_data = yaml.safe_load(f) or {}

    config = Config(**config_data)

    # 应用环境变量覆盖
    if photos_dir := os.environ.get("PHOTOS_DIR"):
        config.paths.photos_dir = photos_dir
    if data_dir := os.environ.get("DATA_DIR"):
        config.paths.data_dir = data_dir
    if redis_url := os.environ.get("REDIS_URL"):
        config.redis.url = redis_url
    if ai_url := os.environ.get("ONEAPI_URL"):
        config.ai.url = ai_url
    if ai_key := os.environ.get("ONEAPI_KEY"):
        config.ai.key = ai_key
    if log_level := os.environ.get("LOG_LEVEL"):
        config.log_level = log_level

    return config


def _generate_config_template(config_path: Path) -> None:
    """生成配置模板文件"""
    template_path = config_path.parent / "config.example.yaml"

    if template_path.exists():
        return

    template_content = """# 目录配置
paths:
  # 媒体根目录（照片、视频、相册）
  photos_dir: "/app/photos"
  # 数据目录，索引数据库 gallery.db 存放于此
  data_dir: "/app/data"

# Redis 配置（任务队列、永久失败标记、接口缓存）
redis:
  url: "redis://localhost:6379"

# AI 描述服务默认配置，任务中未携带 url/key 时使用
ai:
  url: ""
  key: ""
  model: ""
  prompt: "请用一段话描述这张图片的内容。"
  timeout: 30
  max_retries: 3

# 索引配置
indexer:
  # 遍历时完全排除的系统目录
  reserved_dirs: ["@eaDir"]
  batch_size: 1000
  # 文件系统稳定多少秒后处理变更
  debounce_seconds: 5
  # 单次变更超过该数量时改为全量重建
  max_incremental_changes: 1000
  # 新视频大小保持不变多少秒后才提交优化
  write_stability_seconds: 2
  watch: true

# 队列消费者配置
workers:
  caption_queue: "ai-caption-queue"
  video_queue: "video-optimize-queue"
  history_queue: "view-history-queue"
  concurrency: 1
  max_attempts: 3
  backoff_seconds: 5
  transform_cache_size: 50
  video_max_retries: 3
  # 永久失败标记保留 7 天
  permanent_failure_ttl: 604800
  ffmpeg_bin: "ffmpeg"

# 接口响应缓存
cache:
  namespace: "route_cache"

log_level: "INFO"
"""

    with open(template_path, "w", encoding="utf-8") as f:
        f.write(template_content)
