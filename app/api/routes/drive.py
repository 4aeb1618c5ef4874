"""
Google Drive 操作 API 路由
"""
import asyncio
import logging
from typing import Awaitable, List, Optional, TypeVar

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile, status

from app.api.deps import (
    get_authorizer, get_image_normalizer, get_settings_dep, get_token_store,
    open_drive_provider
)
from app.api.schemas import DataResponse, RemoteFileSchema, UploadResponse, UploadResultSchema
from app.core.config import Settings
from app.core.exceptions import ClientDisconnectedError, ValidationError
from app.services.authorizer import Authorizer
from app.services.image_normalizer import ImageNormalizer
from app.services.token_store import TokenStore
from app.services.upload_service import UploadService, UploadTask

logger = logging.getLogger(__name__)
router = APIRouter(tags=["网盘操作"])

T = TypeVar("T")


async def _watch_disconnect(request: Request, task: asyncio.Task, interval: float) -> bool:
    """客户端断开时取消 task，返回是否因断开而取消"""
    while not task.done():
        if await request.is_disconnected():
            logger.warning("Client disconnected, cancelling in-flight uploads")
            task.cancel()
            return True
        await asyncio.sleep(interval)
    return False


async def run_until_disconnected(request: Request, aw: Awaitable[T], interval: float) -> T:
    """
    执行 aw，客户端断开时取消

    Raises:
        ClientDisconnectedError: 客户端在完成前断开
    """
    task = asyncio.ensure_future(aw)
    watcher = asyncio.create_task(_watch_disconnect(request, task, interval))
    try:
        return await task
    except asyncio.CancelledError:
        if watcher.done() and not watcher.cancelled() and watcher.result():
            raise ClientDisconnectedError()
        raise
    finally:
        watcher.cancel()


@router.post("/create_folder", response_model=DataResponse)
async def create_folder(
    folder_name: str = Form(...),
    parent_folder_id: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings_dep),
    authorizer: Authorizer = Depends(get_authorizer),
    token_store: TokenStore = Depends(get_token_store)
):
    """创建文件夹"""
    if not folder_name.strip():
        raise ValidationError("folder_name 不能为空")

    async with open_drive_provider(settings, token_store, authorizer) as provider:
        folder = await provider.create_folder(folder_name, parent_folder_id or None)

    return DataResponse(
        message=f"Folder created: {folder.id}",
        data=RemoteFileSchema.model_validate(folder)
    )


@router.post("/upload_file", response_model=UploadResponse)
async def upload_file(
    request: Request,
    response: Response,
    folder_id: str = Form(...),
    files: Optional[List[UploadFile]] = File(None),
    settings: Settings = Depends(get_settings_dep),
    authorizer: Authorizer = Depends(get_authorizer),
    token_store: TokenStore = Depends(get_token_store),
    normalizer: ImageNormalizer = Depends(get_image_normalizer)
):
    """
    上传文件

    所有文件并发上传，全部完成后返回每个文件的结果；
    任一文件失败时返回 500，响应体中仍包含全部结果
    """
    # 浏览器未选择文件时会提交一个空文件名的字段
    files = [f for f in files or [] if f.filename]
    if not files:
        raise ValidationError("No files found in request")
    if len(files) > settings.upload.max_files:
        raise ValidationError(
            f"Too many files: {len(files)} (max {settings.upload.max_files})"
        )

    tasks = [
        UploadTask(
            filename=f.filename,
            folder_id=folder_id,
            stream=f.file,
            content_type=f.content_type
        )
        for f in files
    ]
    logger.info(f"Uploading {len(tasks)} file(s) to folder {folder_id}")

    async with open_drive_provider(settings, token_store, authorizer) as provider:
        service = UploadService(provider, normalizer, settings.upload.max_concurrency)
        results = await run_until_disconnected(
            request,
            service.upload_all(tasks),
            settings.upload.disconnect_poll_interval
        )

    succeeded = sum(1 for r in results if r.success)
    failed = len(results) - succeeded
    if failed:
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return UploadResponse(
        success=failed == 0,
        message=f"File uploaded: {succeeded}/{len(results)}",
        folder_id=folder_id,
        total=len(results),
        succeeded=succeeded,
        failed=failed,
        items=[UploadResultSchema.model_validate(r) for r in results]
    )
