"""
业务服务模块
"""
from .token_store import TokenStore
from .authorizer import Authorizer
from .image_normalizer import ImageNormalizer
from .upload_service import UploadService, UploadTask, UploadResult

__all__ = [
    "TokenStore", "Authorizer", "ImageNormalizer",
    "UploadService", "UploadTask", "UploadResult",
]
