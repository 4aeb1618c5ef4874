"""
授权 Token 数据模型
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

# 提前判定过期，避免请求途中失效
EXPIRY_LEEWAY = timedelta(seconds=10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthorizationToken:
    """OAuth2 授权 Token"""
    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    scopes: List[str] = field(default_factory=list)

    def __post_init__(self):
        # 空字符串和 None 都表示没有 refresh_token
        if not self.refresh_token:
            self.refresh_token = None

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """是否已过期（没有过期时间的 Token 视为永不过期）"""
        if self.expiry is None:
            return False
        now = now or _utcnow()
        return now >= self.expiry - EXPIRY_LEEWAY

    @property
    def authorization_header(self) -> str:
        # Google 返回 "Bearer"，也兼容小写写法
        token_type = "Bearer" if self.token_type.lower() == "bearer" else self.token_type
        return f"{token_type} {self.access_token}"

    @classmethod
    def from_token_response(
        cls,
        payload: Dict[str, Any],
        now: Optional[datetime] = None,
        previous: Optional["AuthorizationToken"] = None
    ) -> "AuthorizationToken":
        """
        从 Token 端点的响应构造 Token

        Args:
            payload: Token 端点返回的 JSON
            now: 当前时间，用于计算过期时间
            previous: 刷新前的 Token，刷新响应缺少 refresh_token 时沿用其值

        Returns:
            AuthorizationToken
        """
        access_token = payload.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ValueError("token response has no access_token")

        expiry = None
        expires_in = payload.get("expires_in")
        if expires_in is not None:
            expiry = (now or _utcnow()) + timedelta(seconds=int(expires_in))

        scope = payload.get("scope")
        if scope:
            scopes = scope.split()
        elif previous is not None:
            scopes = list(previous.scopes)
        else:
            scopes = []

        refresh_token = payload.get("refresh_token")
        if not refresh_token and previous is not None:
            refresh_token = previous.refresh_token

        return cls(
            access_token=access_token,
            token_type=payload.get("token_type") or "Bearer",
            refresh_token=refresh_token,
            expiry=expiry,
            scopes=scopes,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "scope": " ".join(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthorizationToken":
        """从持久化的 JSON 构造，格式不符时抛出 ValueError"""
        if not isinstance(data, dict):
            raise ValueError("token data must be an object")

        access_token = data.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ValueError("missing access_token")

        expiry = data.get("expiry")
        if expiry:
            expiry = datetime.fromisoformat(expiry)
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
        else:
            expiry = None

        scope = data.get("scope") or ""
        if not isinstance(scope, str):
            raise ValueError("scope must be a string")

        return cls(
            access_token=access_token,
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token"),
            expiry=expiry,
            scopes=scope.split(),
        )

