"""
Google Drive Provider

基于 httpx 直接调用 Google Drive v3 REST API
"""
import asyncio
import json
import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import RemoteSettings
from app.core.exceptions import AuthExpiredError, RemoteAPIError
from app.services.authorizer import describe_error_response

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# 可重试的 HTTP 状态码
RETRYABLE_STATUS = {429, 500, 502, 503, 504}

FILE_FIELDS = "id,name,mimeType,parents"


@dataclass
class RemoteFile:
    """远程文件/文件夹信息"""
    id: str
    name: str
    mime_type: Optional[str] = None
    parents: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteFile":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType"),
            parents=list(data.get("parents") or []),
        )


class GoogleDriveProvider:
    """
    Google Drive Provider

    所有请求通过已认证的 httpx.AsyncClient 发出，
    对网络错误和 429/5xx 做有限次数的指数退避重试
    """

    def __init__(self, client: httpx.AsyncClient, settings: RemoteSettings):
        """
        初始化 Provider

        Args:
            client: 已认证的 httpx.AsyncClient（由 Authorizer 构造）
            settings: 远程 API 配置
        """
        self.client = client
        self.settings = settings

    async def close(self):
        """关闭客户端"""
        await self.client.aclose()

    async def __aenter__(self) -> "GoogleDriveProvider":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _backoff_delay(self, attempt: int) -> float:
        """第 attempt 次重试前的等待时间（秒），attempt 从 1 开始"""
        base = self.settings.backoff_base
        if base <= 0:
            return 0.0
        delay = min(base * (2 ** (attempt - 1)), self.settings.backoff_max)
        return delay + random.uniform(0, base)

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """
        发送请求并解析 JSON 响应

        Raises:
            AuthExpiredError: 凭据失效且无法刷新
            RemoteAPIError: 远程调用最终失败
        """
        max_retries = self.settings.max_retries
        attempt = 0

        while True:
            try:
                response = await self.client.request(method, url, **kwargs)
            except AuthExpiredError:
                raise
            except RemoteAPIError as e:
                # Token 刷新时的 5xx
                if attempt >= max_retries:
                    raise
                error = str(e)
            except httpx.TimeoutException as e:
                if attempt >= max_retries:
                    raise RemoteAPIError(f"请求超时: {method} {url}: {e!r}") from e
                error = f"timeout: {e!r}"
            except httpx.TransportError as e:
                if attempt >= max_retries:
                    raise RemoteAPIError(f"网络错误: {method} {url}: {e!r}") from e
                error = f"transport error: {e!r}"
            else:
                if response.status_code in RETRYABLE_STATUS and attempt < max_retries:
                    error = describe_error_response(response)
                else:
                    return self._handle_response(response)

            attempt += 1
            delay = self._backoff_delay(attempt)
            logger.warning(
                f"Drive API {method} {url} failed ({error}), "
                f"retry {attempt}/{max_retries} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    def _handle_response(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code == 401:
            raise AuthExpiredError(f"访问凭据被拒绝: {describe_error_response(response)}")

        if response.is_error:
            detail = describe_error_response(response)
            logger.error(f"Drive API error: {detail}")
            raise RemoteAPIError(detail, remote_status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteAPIError(f"Drive API 返回的不是 JSON: {e}") from e
        if not isinstance(data, dict) or "id" not in data:
            raise RemoteAPIError(f"Drive API 响应缺少 id: {data!r}")
        return data

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> RemoteFile:
        """
        创建文件夹

        Args:
            name: 文件夹名称
            parent_id: 父文件夹 ID，为空时创建在根目录

        Returns:
            RemoteFile
        """
        metadata: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]

        data = await self._request(
            "POST",
            f"{self.settings.drive_api_url}/files",
            params={"fields": FILE_FIELDS},
            json=metadata,
        )
        folder = RemoteFile.from_api(data)
        logger.info(f"Created folder: {folder.id} ({name})")
        return folder

    async def upload_file(
        self,
        name: str,
        parent_id: Optional[str],
        content: bytes,
        mime_type: str = "application/octet-stream"
    ) -> RemoteFile:
        """
        上传文件（multipart 上传，元数据和内容一次提交）

        Args:
            name: 文件名
            parent_id: 目标文件夹 ID
            content: 文件内容
            mime_type: 文件 MIME 类型

        Returns:
            RemoteFile
        """
        metadata: Dict[str, Any] = {"name": name}
        if parent_id:
            metadata["parents"] = [parent_id]

        boundary = uuid.uuid4().hex
        body, content_type = build_multipart_related(metadata, content, mime_type, boundary)

        data = await self._request(
            "POST",
            f"{self.settings.upload_api_url}/files",
            params={"uploadType": "multipart", "fields": FILE_FIELDS},
            content=body,
            headers={"Content-Type": content_type},
        )
        remote = RemoteFile.from_api(data)
        logger.info(f"Uploaded file: {remote.id} ({name}, {len(content)} bytes)")
        return remote


def build_multipart_related(
    metadata: Dict[str, Any],
    content: bytes,
    mime_type: str,
    boundary: str
) -> tuple[bytes, str]:
    """
    构造 multipart/related 请求体

    Returns:
        (请求体, Content-Type 头)
    """
    head = (
        f"--{boundary}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{json.dumps(metadata, ensure_ascii=False)}\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: {mime_type}\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + content + tail, f"multipart/related; boundary={boundary}"
