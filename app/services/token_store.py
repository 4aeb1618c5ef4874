"""
Token 存储服务

将唯一的授权 Token 以 JSON 形式保存在本地文件中（单用户）。
文件不加锁：并发授权流程可能互相覆盖，单用户场景下可以接受。
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from app.core.exceptions import TokenDecodeError, TokenNotFoundError
from app.models.token import AuthorizationToken

logger = logging.getLogger(__name__)


class TokenStore:
    """本地文件 Token 存储"""

    def __init__(self, path: Union[str, Path]):
        """
        初始化存储

        Args:
            path: Token 文件路径
        """
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> AuthorizationToken:
        """
        读取 Token

        Returns:
            AuthorizationToken

        Raises:
            TokenNotFoundError: 文件不存在
            TokenDecodeError: 文件内容无效
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info(f"[TokenStore] Token file not found: {self.path}")
            raise TokenNotFoundError(str(self.path))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"[TokenStore] Invalid JSON in token file: {e}")
            raise TokenDecodeError(f"Token 文件不是有效的 JSON: {e}")

        try:
            token = AuthorizationToken.from_dict(data)
        except (ValueError, TypeError) as e:
            logger.error(f"[TokenStore] Malformed token file: {e}")
            raise TokenDecodeError(f"Token 文件格式错误: {e}")

        logger.debug(f"[TokenStore] Loaded token from {self.path}, expires at: {token.expiry}")
        return token

    def save(self, token: AuthorizationToken) -> None:
        """
        保存 Token，覆盖已有文件

        先写入同目录下的临时文件再原子替换，避免其他请求读到半个文件。
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=".token-", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(token.to_dict(), f, indent=4, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.info(f"[TokenStore] Token saved to {self.path}")

    def clear(self) -> bool:
        """删除 Token 文件，返回是否确实删除了文件"""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"[TokenStore] Token removed: {self.path}")
        return True
