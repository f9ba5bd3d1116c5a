# circuit_boq/services/exceptions.py
from typing import Optional


class MaterialEngineError(Exception):
    """Base class for every error raised by the material engine."""


class MaterialValidationError(MaterialEngineError, ValueError):
    '''
    输入不合法（描述为空、数量无法解析等），在任何持久化之前抛出
    field 指明出错的输入字段，供 UI 做字段级提示
    '''
    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class MaterialNotFoundError(MaterialEngineError, LookupError):
    pass


class PersistenceError(MaterialEngineError, RuntimeError):
    '''
    存储不可达或写入失败。调用方可重试，已写入的部分状态不会被隐藏或回滚
    '''


class CascadeDeleteError(PersistenceError):
    '''
    删除子记录失败时中止级联，父记录保持不变
    '''
    def __init__(self, message: str, *, parent_id: str, deleted_child_ids=None):
        super().__init__(message)
        self.parent_id = parent_id
        self.deleted_child_ids = list(deleted_child_ids or [])
