"""
同步异常定义
"""
from typing import Optional


class SyncError(Exception):
    """同步异常基类"""


class ConfigurationError(SyncError):
    """映射配置错误（缺少键字段、键字段未映射等）"""


class NotFoundError(SyncError):
    """需要的实体或记录不存在"""


class EntityNotFoundError(NotFoundError):
    """本地实体不存在"""

    def __init__(self, entity_id, entity_type: str):
        self.entity_id = entity_id
        self.entity_type = entity_type
        super().__init__(f"Entity not found: {entity_type} {entity_id}")


class RemoteAPIError(SyncError):
    """远程 API 调用失败，可重试"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response_body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class AuthorizationError(RemoteAPIError):
    """远程连接未授权，整批处理必须中止"""


class PullError(SyncError):
    """拉取失败，当前记录需要稍后重试"""


class MappedObjectExistsError(SyncError):
    """同一远程记录和映射已存在关联"""

    def __init__(self, salesforce_id: str, mapping_id: str):
        self.salesforce_id = salesforce_id
        self.mapping_id = mapping_id
        super().__init__(
            f"Mapped object already exists for {salesforce_id} on mapping {mapping_id}"
        )


class ConsistencyWarning(UserWarning):
    """状态不一致但不做修改（例如关联对应的映射已不存在）"""
