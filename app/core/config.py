"""
全局配置模块

使用 Pydantic Settings 管理配置
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.exceptions import ConfigError

APP_NAME = "Drive Upload Gateway"
APP_VERSION = "1.0.0"


class GoogleSettings(BaseSettings):
    """Google OAuth 配置"""
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    client_secret: str = Field(default="", alias="GOOGLE_CLIENT_SECRET")
    redirect_url: str = Field(
        default="http://localhost:8080/callback", alias="GOOGLE_REDIRECT_URL"
    )
    # 只访问本应用创建的文件
    scopes: List[str] = Field(
        default=["https://www.googleapis.com/auth/drive.file"],
        alias="GOOGLE_SCOPES"
    )
    # 固定的 state 值，单用户场景下足够
    state: str = Field(default="state-token", alias="OAUTH_STATE")

    auth_url: str = Field(
        default="https://accounts.google.com/o/oauth2/v2/auth", alias="GOOGLE_AUTH_URL"
    )
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token", alias="GOOGLE_TOKEN_URL"
    )

    def require_credentials(self) -> None:
        """检查必需的客户端凭据，缺失时抛出 ConfigError"""
        missing = []
        if not self.client_id:
            missing.append("GOOGLE_CLIENT_ID")
        if not self.client_secret:
            missing.append("GOOGLE_CLIENT_SECRET")
        if missing:
            raise ConfigError(
                f"{' and '.join(missing)} environment variables must be set"
            )


class GatewaySettings(BaseSettings):
    """网关服务配置"""
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    host: str = Field(default="0.0.0.0", alias="GATEWAY_HOST")
    port: int = Field(default=8080, alias="GATEWAY_PORT")
    debug: bool = Field(default=False, alias="GATEWAY_DEBUG")

    # CORS 配置
    enable_cors: bool = Field(default=False, alias="ENABLE_CORS")
    cors_origins: List[str] = Field(default=["*"], alias="CORS_ORIGINS")


class UploadSettings(BaseSettings):
    """上传流水线配置"""
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    # 单个请求内同时上传的文件数上限
    max_concurrency: int = Field(default=4, ge=1, alias="UPLOAD_MAX_CONCURRENCY")
    # 单个请求允许的文件数上限
    max_files: int = Field(default=50, ge=1, alias="UPLOAD_MAX_FILES")
    # auto: 仅图片重新编码; all: 所有文件都按图片处理; none: 原样上传
    image_policy: Literal["auto", "all", "none"] = Field(
        default="auto", alias="UPLOAD_IMAGE_POLICY"
    )
    image_quality: int = Field(default=90, ge=1, le=100, alias="UPLOAD_IMAGE_QUALITY")
    # 检测客户端断开的轮询间隔（秒）
    disconnect_poll_interval: float = Field(default=0.5, gt=0, alias="UPLOAD_DISCONNECT_POLL")


class RemoteSettings(BaseSettings):
    """Google Drive API 调用配置"""
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    drive_api_url: str = Field(
        default="https://www.googleapis.com/drive/v3", alias="DRIVE_API_URL"
    )
    upload_api_url: str = Field(
        default="https://www.googleapis.com/upload/drive/v3", alias="DRIVE_UPLOAD_API_URL"
    )
    # 每次远程调用的超时时间（秒）
    timeout: float = Field(default=60.0, gt=0, alias="REMOTE_TIMEOUT")
    max_retries: int = Field(default=3, ge=0, alias="REMOTE_MAX_RETRIES")
    backoff_base: float = Field(default=0.5, ge=0, alias="REMOTE_BACKOFF_BASE")
    backoff_max: float = Field(default=8.0, ge=0, alias="REMOTE_BACKOFF_MAX")


class LogSettings(BaseSettings):
    """日志配置"""
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    level: str = Field(default="INFO", alias="LOG_LEVEL")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
        alias="LOG_FORMAT"
    )


class Settings(BaseSettings):
    """应用配置"""
    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    # OAuth 配置
    google: GoogleSettings = Field(default_factory=GoogleSettings)

    # 网关配置
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)

    # 上传配置
    upload: UploadSettings = Field(default_factory=UploadSettings)

    # 远程 API 配置
    remote: RemoteSettings = Field(default_factory=RemoteSettings)

    # 日志配置
    log: LogSettings = Field(default_factory=LogSettings)

    # 数据目录
    data_dir: Path = Field(default=Path.home() / ".drive_gateway", alias="DATA_DIR")

    # Token 文件路径（未配置时位于数据目录下）
    token_file: Optional[Path] = Field(default=None, alias="TOKEN_FILE")

    @property
    def token_path(self) -> Path:
        """Token 文件的实际路径"""
        if self.token_file is not None:
            return self.token_file.expanduser()
        return self.data_dir.expanduser() / "token.json"


@lru_cache
def get_settings() -> Settings:
    """获取配置实例（缓存）"""
    return Settings()
