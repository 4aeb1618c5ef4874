"""
认证管理 API 路由

基于 Google OAuth2 授权码流程
"""
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from app.api.deps import get_authorizer, get_settings_dep, get_token_store
from app.api.schemas import ResponseBase
from app.core.config import Settings
from app.core.exceptions import ExchangeError, ValidationError
from app.services.authorizer import Authorizer
from app.services.token_store import TokenStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["认证管理"])

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent.parent / "templates"))


@router.get("/", response_class=HTMLResponse)
async def index(
    request: Request,
    settings: Settings = Depends(get_settings_dep),
    authorizer: Authorizer = Depends(get_authorizer),
    token_store: TokenStore = Depends(get_token_store)
):
    """首页，展示 Google 授权链接"""
    auth_url = authorizer.build_consent_url(settings.google.state)
    return templates.TemplateResponse(
        request,
        "index.html",
        {"auth_url": auth_url, "authorized": token_store.exists()}
    )


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings_dep),
    authorizer: Authorizer = Depends(get_authorizer),
    token_store: TokenStore = Depends(get_token_store)
):
    """
    OAuth 回调

    用授权码交换 Token 并保存，成功后跳转回首页
    """
    if error:
        logger.warning(f"Authorization denied by provider: {error}")
        raise ExchangeError(f"授权被拒绝: {error}")

    if not code:
        raise ValidationError("缺少授权码参数 code")

    if state is not None and state != settings.google.state:
        logger.warning("OAuth callback state mismatch")
        raise ValidationError("state 参数不匹配")

    token = await authorizer.exchange_code(code)
    token_store.save(token)

    return RedirectResponse(url="/", status_code=307)


@router.post("/logout", response_model=ResponseBase)
async def logout(token_store: TokenStore = Depends(get_token_store)):
    """退出登录（删除本地 Token）"""
    if token_store.clear():
        return ResponseBase(message="退出成功")
    return ResponseBase(message="没有已保存的 Token")
