from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SortField(str, Enum):
    """目录列表排序字段"""
    MODIFIED_TIME = "modifiedTime"
    NAME = "name"


class SortOrder(str, Enum):
    """排序方向"""
    ASC = "asc"
    DESC = "desc"


class DirectoryEntry(BaseModel):
    """目录中一个子项的只读快照"""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="文件名")
    size: int = Field(..., description="文件大小（字节）")
    is_directory: bool = Field(..., alias="isDirectory", description="是否为目录")
    modified_time: datetime = Field(..., alias="modifiedTime", description="修改时间")


class DirectoryListing(BaseModel):
    """目录列表响应"""
    items: List[DirectoryEntry] = Field(default_factory=list, description="子项列表")


class PathResponse(BaseModel):
    """上传、移动、删除的统一响应"""
    success: bool = Field(True, description="是否成功")
    path: str = Field(..., description="操作后的相对路径")


class ErrorResponse(BaseModel):
    """错误响应模型"""
    success: bool = Field(False, description="是否成功")
    error: str = Field(..., description="错误信息")
    error_code: Optional[str] = Field(None, description="错误码")
    details: Optional[dict] = Field(None, description="错误详情")
