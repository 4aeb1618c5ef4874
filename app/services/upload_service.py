"""
上传服务

并发上传多个文件到 Google Drive，每个文件一个任务，
所有任务结束后汇总每个文件的结果
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple

from app.core.exceptions import AppException, FileReadError
from app.providers.google_drive import GoogleDriveProvider
from app.services.image_normalizer import OUTPUT_MIME_TYPE, ImageNormalizer

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class UploadTask:
    """单个文件的上传任务"""
    filename: str
    folder_id: str
    stream: BinaryIO
    content_type: Optional[str] = None


@dataclass
class UploadResult:
    """单个文件的上传结果"""
    filename: str
    success: bool
    file_id: Optional[str] = None
    mime_type: Optional[str] = None
    normalized: bool = False
    error_kind: Optional[str] = None
    error: Optional[str] = None


class UploadService:
    """多文件上传流水线"""

    def __init__(
        self,
        provider: GoogleDriveProvider,
        normalizer: ImageNormalizer,
        max_concurrency: int = 4
    ):
        """
        初始化上传服务

        Args:
            provider: GoogleDriveProvider 实例
            normalizer: 图片标准化器
            max_concurrency: 同时上传的文件数上限
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.provider = provider
        self.normalizer = normalizer
        self.max_concurrency = max_concurrency

    async def upload_all(self, tasks: List[UploadTask]) -> List[UploadResult]:
        """
        并发上传所有文件

        单个文件失败只影响该文件的结果；取消时所有进行中的上传一并取消

        Args:
            tasks: 上传任务列表

        Returns:
            与 tasks 一一对应的结果列表
        """
        if not tasks:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        workers = [
            asyncio.create_task(self._run(task, semaphore), name=f"upload:{task.filename}")
            for task in tasks
        ]
        results = await asyncio.gather(*workers)

        succeeded = sum(1 for r in results if r.success)
        logger.info(
            f"Upload finished: total={len(results)}, "
            f"succeeded={succeeded}, failed={len(results) - succeeded}"
        )
        return list(results)

    async def _run(self, task: UploadTask, semaphore: asyncio.Semaphore) -> UploadResult:
        async with semaphore:
            try:
                return await self._upload_one(task)
            except AppException as e:
                logger.warning(f"Upload failed for {task.filename}: [{e.kind}] {e.message}")
                return UploadResult(
                    filename=task.filename,
                    success=False,
                    error_kind=e.kind,
                    error=e.message,
                )
            except Exception as e:
                logger.exception(f"Unexpected error uploading {task.filename}")
                return UploadResult(
                    filename=task.filename,
                    success=False,
                    error_kind="internal_error",
                    error=str(e) or e.__class__.__name__,
                )
            finally:
                task.stream.close()

    async def _upload_one(self, task: UploadTask) -> UploadResult:
        try:
            data = await asyncio.to_thread(task.stream.read)
        except (OSError, ValueError) as e:
            raise FileReadError(f"Unable to open file: {e}") from e

        content, mime_type, normalized = await asyncio.to_thread(
            self._prepare_content, data, task.content_type
        )

        remote = await self.provider.upload_file(
            task.filename, task.folder_id, content, mime_type
        )
        return UploadResult(
            filename=task.filename,
            success=True,
            file_id=remote.id,
            mime_type=mime_type,
            normalized=normalized,
        )

    def _prepare_content(
        self,
        data: bytes,
        content_type: Optional[str]
    ) -> Tuple[bytes, str, bool]:
        """按策略决定是否重新编码，返回 (内容, MIME 类型, 是否已重新编码)"""
        if self.normalizer.should_normalize(data, content_type):
            return self.normalizer.normalize(data).getvalue(), OUTPUT_MIME_TYPE, True
        return data, content_type or DEFAULT_MIME_TYPE, False
