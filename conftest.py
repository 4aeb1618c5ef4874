"""
测试公共夹具

FakeGoogle 通过 httpx.MockTransport 模拟 OAuth Token 端点和 Drive API，测试不访问网络
"""
import io
import json
from typing import Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest
from PIL import Image

from app.core.config import GoogleSettings, RemoteSettings, Settings, UploadSettings
from app.services.token_store import TokenStore


def make_image_bytes(fmt: str = "PNG", mode: str = "RGB", size=(32, 24), color=(200, 40, 90)) -> bytes:
    """生成测试图片"""
    if mode in ("RGBA", "LA") and isinstance(color, tuple) and len(color) == 3:
        color = color + (128,)
    img = Image.new(mode, size, color)
    # 画一些内容，避免纯色图片
    for x in range(0, size[0], 4):
        for y in range(0, size[1], 3):
            img.putpixel((x, y), (x * 7 % 256, y * 11 % 256, 30) + ((255,) if mode == "RGBA" else ()))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def parse_multipart_related(request: httpx.Request):
    """解析 multipart/related 上传请求，返回 (metadata, media content-type, content)"""
    content_type = request.headers["content-type"]
    assert content_type.startswith("multipart/related; boundary=")
    boundary = content_type.split("boundary=", 1)[1].encode()

    parts = request.content.split(b"--" + boundary)
    # parts: [b"", 元数据, 文件内容, b"--\r\n"]
    assert parts[-1] == b"--\r\n"

    meta_headers, meta_body = parts[1].split(b"\r\n\r\n", 1)
    media_headers, media_body = parts[2].split(b"\r\n\r\n", 1)
    assert b"application/json" in meta_headers

    metadata = json.loads(meta_body[:-2].decode("utf-8"))
    media_type = media_headers.decode().split("Content-Type:", 1)[1].strip()
    return metadata, media_type, media_body[:-2]


class FakeGoogle:
    """模拟 Google OAuth 和 Drive API"""

    TOKEN_HOST = "oauth2.googleapis.com"

    def __init__(self):
        self.requests: List[httpx.Request] = []
        # 请求对象在重放时会被修改，收到请求时记下 Authorization 头
        self.api_auth: List[Optional[str]] = []
        self.valid_access_token = "access-1"
        self.refresh_token = "refresh-1"
        self.uploads: List[Dict] = []
        self.folders: List[Dict] = []
        # 文件名 -> 失败时返回的状态码
        self.fail_uploads: Dict[str, int] = {}
        self._counter = 0

    @property
    def remote_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host != self.TOKEN_HOST]

    @property
    def token_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == self.TOKEN_HOST]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.host == self.TOKEN_HOST:
            return self._token(request)

        self.api_auth.append(request.headers.get("authorization"))

        if request.headers.get("authorization") != f"Bearer {self.valid_access_token}":
            return httpx.Response(
                401, json={"error": {"code": 401, "message": "Invalid Credentials"}}
            )

        if request.url.path == "/upload/drive/v3/files":
            return self._upload(request)
        if request.url.path == "/drive/v3/files":
            return self._create_folder(request)
        return httpx.Response(200, json={"ok": True})

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        grant_type = form.get("grant_type")

        if grant_type == "authorization_code" and form.get("code") == "good":
            return httpx.Response(200, json={
                "access_token": self.valid_access_token,
                "expires_in": 3599,
                "refresh_token": self.refresh_token,
                "scope": "https://www.googleapis.com/auth/drive.file",
                "token_type": "Bearer",
            })

        if grant_type == "refresh_token" and form.get("refresh_token") == self.refresh_token:
            self.valid_access_token = "access-2"
            return httpx.Response(200, json={
                "access_token": self.valid_access_token,
                "expires_in": 3599,
                "scope": "https://www.googleapis.com/auth/drive.file",
                "token_type": "Bearer",
            })

        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad Request"})

    def _create_folder(self, request: httpx.Request) -> httpx.Response:
        metadata = json.loads(request.content)
        self.folders.append(metadata)
        return httpx.Response(200, json={
            "id": self._next_id("folder"),
            "name": metadata["name"],
            "mimeType": metadata["mimeType"],
            "parents": metadata.get("parents", []),
        })

    def _upload(self, request: httpx.Request) -> httpx.Response:
        metadata, media_type, content = parse_multipart_related(request)
        name = metadata["name"]
        if name in self.fail_uploads:
            status_code = self.fail_uploads[name]
            return httpx.Response(
                status_code, json={"error": {"code": status_code, "message": "The user's Drive storage quota has been exceeded."}}
            )
        self.uploads.append({"metadata": metadata, "mime_type": media_type, "content": content})
        return httpx.Response(200, json={
            "id": self._next_id("file"),
            "name": name,
            "mimeType": media_type,
            "parents": metadata.get("parents", []),
        })


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        google=GoogleSettings(client_id="test-client", client_secret="test-secret"),
        upload=UploadSettings(max_concurrency=2),
        remote=RemoteSettings(max_retries=2, backoff_base=0),
        data_dir=tmp_path,
    )


@pytest.fixture
def token_store(settings) -> TokenStore:
    return TokenStore(settings.token_path)


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")


@pytest.fixture
def make_image():
    return make_image_bytes


@pytest.fixture
def parse_upload():
    return parse_multipart_related
