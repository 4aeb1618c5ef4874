"""
异常定义模块
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class ConfigError(RuntimeError):
    """配置错误，启动阶段致命"""


class AppException(HTTPException):
    """应用基础异常"""

    kind = "internal_error"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        kind: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        if kind:
            self.kind = kind
        self.extra = extra or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(AppException):
    """参数验证错误"""

    kind = "validation_error"

    def __init__(self, message: str = "参数验证失败"):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST)


class ExchangeError(AppException):
    """授权码交换失败"""

    kind = "exchange_failed"

    def __init__(self, message: str = "授权码交换失败"):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST)


class ReauthorizationRequired(AppException):
    """需要重新授权"""

    kind = "unauthorized"

    def __init__(self, message: str = "需要重新授权"):
        super().__init__(
            message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            extra={"reauthorize_url": "/"}
        )


class TokenNotFoundError(ReauthorizationRequired):
    """Token 文件不存在"""

    kind = "token_not_found"

    def __init__(self, path: str = None):
        message = f"Token 文件不存在: {path}" if path else "Token 文件不存在"
        super().__init__(message)


class TokenDecodeError(ReauthorizationRequired):
    """Token 文件内容无效"""

    kind = "token_invalid"

    def __init__(self, message: str = "Token 文件内容无效"):
        super().__init__(message)


class AuthExpiredError(ReauthorizationRequired):
    """访问凭据已过期且无法刷新"""

    kind = "auth_expired"

    def __init__(self, message: str = "访问凭据已过期且无法刷新"):
        super().__init__(message)


class FileReadError(AppException):
    """读取上传文件失败"""

    kind = "file_read_error"

    def __init__(self, message: str = "读取文件失败"):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST)


class ImageDecodeError(AppException):
    """图片解码失败"""

    kind = "image_decode_error"

    def __init__(self, message: str = "无法解码图片"):
        super().__init__(message, status_code=422)


class RemoteAPIError(AppException):
    """Google Drive API 调用失败"""

    kind = "remote_api_error"

    def __init__(self, message: str = "远程 API 调用失败", remote_status: Optional[int] = None):
        super().__init__(message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.remote_status = remote_status


class ClientDisconnectedError(AppException):
    """客户端在上传完成前断开连接"""

    kind = "client_disconnected"

    def __init__(self, message: str = "客户端已断开连接，上传已取消"):
        # 499: Client Closed Request
        super().__init__(message, status_code=499)
