"""
API 依赖注入模块
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, Request

from app.core.config import Settings
from app.providers.google_drive import GoogleDriveProvider
from app.services.authorizer import Authorizer
from app.services.image_normalizer import ImageNormalizer
from app.services.token_store import TokenStore


def get_settings_dep(request: Request) -> Settings:
    """获取配置依赖（应用启动时创建，保存在 app.state 上）"""
    return request.app.state.settings


def get_token_store(settings: Settings = Depends(get_settings_dep)) -> TokenStore:
    """获取 TokenStore 依赖"""
    return TokenStore(settings.token_path)


def get_authorizer(
    request: Request,
    settings: Settings = Depends(get_settings_dep)
) -> Authorizer:
    """获取 Authorizer 依赖"""
    return Authorizer(
        settings.google,
        timeout=settings.remote.timeout,
        transport=request.app.state.http_transport
    )


def get_image_normalizer(settings: Settings = Depends(get_settings_dep)) -> ImageNormalizer:
    """获取 ImageNormalizer 依赖"""
    return ImageNormalizer(
        quality=settings.upload.image_quality,
        policy=settings.upload.image_policy
    )


@asynccontextmanager
async def open_drive_provider(
    settings: Settings,
    token_store: TokenStore,
    authorizer: Authorizer
) -> AsyncIterator[GoogleDriveProvider]:
    """
    每个请求读取一次 Token 并构造已认证的 Provider

    刷新后的 Token 会写回 TokenStore

    Raises:
        TokenNotFoundError / TokenDecodeError: 需要重新授权
    """
    token = token_store.load()
    client = authorizer.authenticated_client(token, on_refresh=token_store.save)
    async with GoogleDriveProvider(client, settings.remote) as provider:
        yield provider
