"""
OAuth2 授权服务

负责生成授权链接、用授权码交换 Token、刷新 Token，
以及构造自动携带/刷新凭据的 HTTP 客户端
"""
import asyncio
import logging
from typing import AsyncGenerator, Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from app.core.config import GoogleSettings
from app.core.exceptions import AuthExpiredError, ExchangeError, RemoteAPIError
from app.models.token import AuthorizationToken

logger = logging.getLogger(__name__)

TokenCallback = Callable[[AuthorizationToken], None]


def describe_error_response(response: httpx.Response) -> str:
    """提取 OAuth / Google API 错误响应中的可读信息"""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            # Google API 风格: {"error": {"code": 403, "message": "..."}}
            message = error.get("message") or error.get("status")
            if message:
                return f"{response.status_code} {message}"
        elif error:
            description = payload.get("error_description")
            if description:
                return f"{response.status_code} {error}: {description}"
            return f"{response.status_code} {error}"

    text = response.text.strip()
    return f"{response.status_code} {text[:500]}" if text else str(response.status_code)


class OAuth2TokenAuth(httpx.Auth):
    """
    httpx 认证流程

    - 每个请求都带上 Authorization 头
    - Token 过期且有 refresh_token 时先刷新（同一客户端内只刷新一次）
    - Token 过期且无法刷新时直接抛出 AuthExpiredError，不发出任何请求
    - 收到 401 时刷新一次后重放请求
    """

    def __init__(
        self,
        authorizer: "Authorizer",
        token: AuthorizationToken,
        on_refresh: Optional[TokenCallback] = None
    ):
        self.authorizer = authorizer
        self.token = token
        self._on_refresh = on_refresh
        self._lock = asyncio.Lock()

    def sync_auth_flow(self, request):
        raise RuntimeError("OAuth2TokenAuth only supports httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        refreshed = False

        if self.token.is_expired():
            async with self._lock:
                # 等锁期间其他请求可能已经完成刷新
                if self.token.is_expired():
                    if not self.token.can_refresh:
                        raise AuthExpiredError()
                    refresh_response = yield self.authorizer.build_refresh_request(self.token)
                    await refresh_response.aread()
                    self._update(refresh_response)
                    refreshed = True

        request.headers["Authorization"] = self.token.authorization_header
        response = yield request

        if response.status_code != 401 or refreshed or not self.token.can_refresh:
            return

        logger.info("Access token rejected with 401, refreshing")
        sent_header = request.headers["Authorization"]
        async with self._lock:
            if sent_header == self.token.authorization_header:
                refresh_response = yield self.authorizer.build_refresh_request(self.token)
                await refresh_response.aread()
                self._update(refresh_response)

        request.headers["Authorization"] = self.token.authorization_header
        yield request

    def _update(self, refresh_response: httpx.Response) -> None:
        self.token = self.authorizer.token_from_refresh_response(refresh_response, self.token)
        if self._on_refresh is None:
            return
        try:
            self._on_refresh(self.token)
        except OSError as e:
            # 持久化失败不影响本次请求，下次请求会再次刷新
            logger.error(f"Failed to persist refreshed token: {e}")


class Authorizer:
    """OAuth2 授权码流程"""

    def __init__(
        self,
        settings: GoogleSettings,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        初始化授权服务

        Args:
            settings: Google OAuth 配置
            timeout: 每次远程调用的超时时间（秒）
            transport: 自定义 httpx 传输层（测试时注入）
        """
        self.settings = settings
        self.timeout = timeout
        self._transport = transport

    def _new_client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.timeout, **kwargs)

    def build_consent_url(self, state: str) -> str:
        """生成授权链接，请求离线访问以获得 refresh_token"""
        params = {
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_url,
            "response_type": "code",
            "scope": " ".join(self.settings.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{self.settings.auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> AuthorizationToken:
        """
        用授权码交换 Token

        结果由调用方负责保存

        Raises:
            ExchangeError: 网络错误、授权码被拒绝或响应格式错误
        """
        if not code:
            raise ExchangeError("缺少授权码")

        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.redirect_url,
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
        }

        try:
            async with self._new_client() as client:
                response = await client.post(self.settings.token_url, data=data)
        except httpx.HTTPError as e:
            logger.error(f"Token exchange network error: {e}")
            raise ExchangeError(f"Unable to retrieve token from web: {e}") from e

        if response.status_code != 200:
            detail = describe_error_response(response)
            logger.error(f"Token exchange rejected: {detail}")
            raise ExchangeError(f"Unable to retrieve token from web: {detail}")

        try:
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError("token response is not an object")
            token = AuthorizationToken.from_token_response(payload)
        except (ValueError, TypeError) as e:
            logger.error(f"Malformed token response: {e}")
            raise ExchangeError(f"Token 端点返回格式错误: {e}") from e

        logger.info(
            f"Token exchanged successfully, expires at: {token.expiry}, "
            f"refreshable: {token.can_refresh}"
        )
        return token

    def build_refresh_request(self, token: AuthorizationToken) -> httpx.Request:
        data: Dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token or "",
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
        }
        # 刷新请求不经过 client.build_request，需要自行带上超时
        return httpx.Request(
            "POST",
            self.settings.token_url,
            data=data,
            extensions={"timeout": httpx.Timeout(self.timeout).as_dict()}
        )

    def token_from_refresh_response(
        self,
        response: httpx.Response,
        previous: AuthorizationToken
    ) -> AuthorizationToken:
        """
        解析刷新响应

        Raises:
            RemoteAPIError: Token 端点 5xx，可重试
            AuthExpiredError: refresh_token 被拒绝或响应无效
        """
        if response.status_code >= 500:
            raise RemoteAPIError(
                f"刷新 Token 失败: {describe_error_response(response)}",
                remote_status=response.status_code
            )
        if response.status_code != 200:
            detail = describe_error_response(response)
            logger.warning(f"Token refresh rejected: {detail}")
            raise AuthExpiredError(f"刷新 Token 被拒绝: {detail}")

        try:
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError("token response is not an object")
            token = AuthorizationToken.from_token_response(payload, previous=previous)
        except (ValueError, TypeError) as e:
            raise AuthExpiredError(f"刷新 Token 响应格式错误: {e}") from e

        logger.info(f"Token refreshed, expires at: {token.expiry}")
        return token

    def authenticated_client(
        self,
        token: AuthorizationToken,
        on_refresh: Optional[TokenCallback] = None
    ) -> httpx.AsyncClient:
        """
        构造带认证的 HTTP 客户端

        构造时不检查 Token 是否过期，过期且无法刷新时在发出请求时抛出 AuthExpiredError

        Args:
            token: 授权 Token
            on_refresh: Token 刷新后的回调（通常用于持久化）

        Returns:
            httpx.AsyncClient，调用方负责关闭
        """
        auth = OAuth2TokenAuth(self, token, on_refresh=on_refresh)
        return self._new_client(auth=auth)
