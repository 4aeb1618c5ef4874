"""
FastAPI 主应用入口

Google Drive 上传网关
基于 FastAPI + httpx + Pillow 构建
"""
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import auth, drive, system
from app.api.schemas import ErrorResponse
from app.core.config import APP_NAME, APP_VERSION, Settings, get_settings
from app.core.exceptions import AppException

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """配置日志：控制台 + 数据目录下的滚动日志文件"""
    data_dir = settings.data_dir.expanduser()
    data_dir.mkdir(parents=True, exist_ok=True)

    log_file = data_dir / "app.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setFormatter(logging.Formatter(settings.log.format))

    logging.basicConfig(
        level=getattr(logging, settings.log.level.upper(), logging.INFO),
        format=settings.log.format,
        handlers=[
            logging.StreamHandler(),
            file_handler
        ]
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理

    缺少 OAuth 客户端凭据时抛出 ConfigError，服务不会启动
    """
    settings: Settings = app.state.settings

    logger.info("Starting Drive Upload Gateway...")
    settings.google.require_credentials()
    settings.data_dir.expanduser().mkdir(parents=True, exist_ok=True)
    logger.info(f"Token file: {settings.token_path}")
    logger.info("Drive Upload Gateway started successfully")

    yield

    logger.info("Drive Upload Gateway shut down successfully")


def register_exception_handlers(app: FastAPI) -> None:
    """所有错误统一返回 {success, error, message}"""

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        body = ErrorResponse(error=exc.kind, message=exc.message, **exc.extra)
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        message = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        body = ErrorResponse(error="validation_error", message=message or "参数验证失败")
        return JSONResponse(status_code=400, content=body.model_dump())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        body = ErrorResponse(error="internal_error", message=str(exc) or exc.__class__.__name__)
        return JSONResponse(status_code=500, content=body.model_dump())


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        settings: 应用配置，默认从环境变量加载
        transport: 访问 Google 的 httpx 传输层，默认使用真实网络

    Returns:
        FastAPI 应用实例
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=APP_NAME,
        description="通过 OAuth2 授权后向 Google Drive 创建文件夹、上传文件",
        version=APP_VERSION,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.http_transport = transport

    # CORS 中间件
    if settings.gateway.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.gateway.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    # 注册路由
    app.include_router(auth.router)
    app.include_router(drive.router)
    app.include_router(system.router, prefix="/api")

    return app


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=_settings.gateway.host,
        port=_settings.gateway.port,
        reload=_settings.gateway.debug,
        log_level=_settings.log.level.lower()
    )
