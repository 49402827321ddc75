class WorkspaceError(Exception):
    """工作区相关错误的基类。"""


class ValidationError(WorkspaceError):
    """记录不满足必填字段、枚举或引用约束时抛出。"""


class NotFoundError(WorkspaceError):
    """项目、根目录或记录不存在时抛出。"""
