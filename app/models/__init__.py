"""
数据模型
"""
from .token import AuthorizationToken

__all__ = ["AuthorizationToken"]
