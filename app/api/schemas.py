"""
API 数据模型 (Pydantic)
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict


# ==================== 通用响应 ====================

class ResponseBase(BaseModel):
    """基础响应"""
    success: bool = True
    message: Optional[str] = None


class DataResponse(ResponseBase):
    """数据响应"""
    data: Optional[Any] = None


class ErrorResponse(BaseModel):
    """错误响应"""
    model_config = ConfigDict(extra="allow")

    success: bool = False
    error: str
    message: str


# ==================== 文件相关 ====================

class RemoteFileSchema(BaseModel):
    """远程文件"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    mime_type: Optional[str] = None
    parents: List[str] = []


class UploadResultSchema(BaseModel):
    """单个文件的上传结果"""
    model_config = ConfigDict(from_attributes=True)

    filename: str
    success: bool
    file_id: Optional[str] = None
    mime_type: Optional[str] = None
    normalized: bool = False
    error_kind: Optional[str] = None
    error: Optional[str] = None


class UploadResponse(ResponseBase):
    """上传响应"""
    folder_id: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    items: List[UploadResultSchema] = []
