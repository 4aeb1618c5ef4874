"""
系统 API 路由
"""
import logging
import platform
import sys
from datetime import datetime

from fastapi import APIRouter, Depends

from app.api.deps import get_settings_dep, get_token_store
from app.api.schemas import DataResponse
from app.core.config import APP_NAME, APP_VERSION, Settings
from app.services.token_store import TokenStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/system", tags=["系统"])


@router.get("/health")
async def health_check():
    """健康检查"""
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "version": APP_VERSION
    }


@router.get("/info", response_model=DataResponse)
async def system_info(
    settings: Settings = Depends(get_settings_dep),
    token_store: TokenStore = Depends(get_token_store)
):
    """获取系统信息"""
    return DataResponse(data={
        "name": APP_NAME,
        "version": APP_VERSION,
        "python_version": sys.version,
        "platform": platform.platform(),
        "authorized": token_store.exists(),
        "image_policy": settings.upload.image_policy,
        "max_concurrency": settings.upload.max_concurrency,
    })
