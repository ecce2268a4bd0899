from __future__ import annotations

import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from loguru import logger


class LogLevel(str, Enum):
    """日志级别枚举"""
    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AppEnv(str, Enum):
    """应用运行环境枚举"""
    DEV = "development"
    PROD = "production"


class Settings(BaseSettings):
    """项目全局配置。

    所有字段均可通过环境变量或 `.env` 文件注入。
    在 FastAPI、后台任务等模块中，直接 `from app.config import settings` 获取单例。
    """

    # —— 数据库 ——
    DATABASE_URL: str = "sqlite:///safereel.db"
    SQLITE_ECHO: bool = False

    # —— 对象存储 (S3) ——
    S3_BUCKET: str = Field("safereel-videos", description="存放上传视频的 S3 桶名")
    S3_ENDPOINT_URL: Optional[str] = Field(
        None,
        description="S3 兼容存储的访问地址，留空则使用 AWS 官方地址"
    )
    AWS_REGION: str = Field("us-east-1", description="AWS 区域")
    AWS_ACCESS_KEY_ID: Optional[str] = Field(None, description="AWS 访问密钥ID，留空则使用默认凭证链")
    AWS_SECRET_ACCESS_KEY: Optional[str] = Field(None, description="AWS 访问密钥")

    # —— 内容审核 (Rekognition) ——
    REKOGNITION_MIN_CONFIDENCE: float = Field(
        30.0,
        description="审核标签置信度阈值，任一标签超过该值即判定为 flagged",
        ge=0,
        le=100
    )
    REKOGNITION_POLL_INTERVAL_SECONDS: float = Field(
        5.0,
        description="两次轮询审核任务之间的等待时间（秒）",
        gt=0
    )
    REKOGNITION_MAX_POLL_ATTEMPTS: int = Field(
        120,
        description="轮询审核任务的最大次数，超过即视为超时",
        ge=1
    )
    REKOGNITION_REQUEST_TIMEOUT_SECONDS: float = Field(
        30.0,
        description="单次查询审核任务状态的超时时间（秒）",
        gt=0
    )
    REKOGNITION_SNS_TOPIC_ARN: Optional[str] = Field(None, description="审核任务完成通知的 SNS 主题")
    REKOGNITION_ROLE_ARN: Optional[str] = Field(None, description="Rekognition 发布 SNS 通知所用的角色")
    MODERATION_FAIL_OPEN: bool = Field(
        default=False,
        description="审核服务出错或超时时是否放行为 safe（默认否：视频标记为 failed）"
    )

    # —— 格式转换 ——
    FFMPEG_BINARY: str = Field("ffmpeg", description="ffmpeg 可执行文件路径")
    TRANSCODE_TIMEOUT_SECONDS: float = Field(1800.0, description="单次转码的超时时间（秒）", gt=0)
    SCRATCH_DIR: Path = Field(
        default=Path(tempfile.gettempdir()) / "safereel",
        description="格式转换时存放临时文件的目录"
    )

    # —— 上传 ——
    UPLOAD_MAX_SIZE_MB: int = Field(500, description="单个上传文件的大小上限（MB）", ge=1)
    UPLOAD_ALLOWED_MIME_TYPES: str = Field(
        default="video/mp4,video/webm,video/ogg,video/quicktime,video/x-msvideo",
        description="允许上传的 MIME 类型，逗号分隔格式"
    )

    # —— 播放与流式传输 ——
    STREAM_CHUNK_SIZE: int = Field(1024 * 1024, description="流式读取对象时的分块大小（字节）", ge=1024)
    SIGNED_URL_TTL_SECONDS: int = Field(3600, description="签名播放地址的有效期（秒）", ge=1)
    METADATA_CACHE_TTL_SECONDS: int = Field(60, description="对象元数据缓存时间（秒）", ge=1)

    # —— 队列与工作者 ——
    WORKER_COUNT: int = Field(
        default=2,
        description="处理视频流水线的工作者协程数量",
        ge=1,
        le=16
    )
    RECONCILE_ON_STARTUP: bool = Field(
        default=True,
        description="启动时是否将遗留在 processing 状态的视频标记为 failed"
    )
    NOTIFY_ORGANIZATION_CHANNEL: bool = Field(
        default=False,
        description="进度事件是否同时推送到组织频道 org:<id>"
    )

    # —— 运行环境 & 日志 ——
    LOG_LEVEL: LogLevel = Field(
        LogLevel.INFO,
        description="日志级别"
    )
    APP_ENV: AppEnv = Field(
        AppEnv.DEV,
        description="运行环境: development/production"
    )

    # —— CORS 跨域配置 ——
    CORS_ORIGINS: str = Field(
        default="*",
        description="允许跨域访问的源地址，逗号分隔格式，如: http://localhost:5173,https://example.com"
    )

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        env_prefix="",  # 不统一前缀，保持与.env变量一致
        case_sensitive=True,
        validate_default=True,
        extra="ignore",
    )

    # —— 验证器 ——
    @field_validator("SCRATCH_DIR")
    @classmethod
    def validate_directory(cls, v: Path) -> Path:
        """验证目录是否存在且可访问"""
        if not v.exists():
            try:
                v.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ValueError(f"无法创建目录 {v}: {e}")
        if not os.access(v, os.R_OK | os.W_OK):
            raise ValueError(f"目录 {v} 缺少读写权限")
        return v.resolve()  # 返回绝对路径

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """验证SQLite数据库URL格式"""
        if not v.startswith("sqlite:///"):
            raise ValueError("仅支持SQLite数据库，URL必须以'sqlite:///'开头")
        return v

    @field_validator("UPLOAD_ALLOWED_MIME_TYPES")
    @classmethod
    def validate_mime_types(cls, v: str) -> str:
        """验证 MIME 类型列表格式"""
        mime_types = [m.strip().lower() for m in v.split(',') if m.strip()]

        if not mime_types:
            raise ValueError("允许上传的 MIME 类型列表不能为空")

        for mime_type in mime_types:
            major, _, minor = mime_type.partition('/')
            if not major or not minor:
                raise ValueError(f"MIME 类型格式必须为 'type/subtype': {mime_type}")

        return ','.join(mime_types)

    @field_validator("CORS_ORIGINS")
    @classmethod
    def validate_cors_origins(cls, v: str) -> str:
        """逗号分隔的源地址，每项为 http(s):// 地址或通配符 *"""
        origins = [origin.strip() for origin in (v or "").split(',') if origin.strip()]
        if not origins:
            raise ValueError("CORS_ORIGINS 至少需要一个源地址")

        invalid = [o for o in origins if o != "*" and not o.startswith(("http://", "https://"))]
        if invalid:
            raise ValueError(f"CORS 源地址必须以 http:// 或 https:// 开头: {', '.join(invalid)}")

        return ','.join(origins)

    def get_cors_origins_list(self) -> list[str]:
        """获取CORS_ORIGINS的列表形式"""
        return self.CORS_ORIGINS.split(',')

    def get_allowed_mime_types(self) -> list[str]:
        """获取UPLOAD_ALLOWED_MIME_TYPES的列表形式"""
        return self.UPLOAD_ALLOWED_MIME_TYPES.split(',')

    @property
    def upload_max_size_bytes(self) -> int:
        return self.UPLOAD_MAX_SIZE_MB * 1024 * 1024


# 全局单例
_settings: Settings | None = None


def get_settings(force_reload: bool = False) -> Settings:
    """返回全局配置单例，如果不存在则创建。

    Args:
        force_reload: 是否强制重新加载配置

    Returns:
        Settings实例
    """
    global _settings
    if _settings is None or force_reload:
        _settings = Settings()
        logger.debug(f"配置已加载: APP_ENV={_settings.APP_ENV.value}, S3_BUCKET={_settings.S3_BUCKET}")
    return _settings


# 初始化单例
settings = get_settings()

__all__ = [
    "Settings",
    "LogLevel",
    "AppEnv",
    "settings",
    "get_settings",
]
