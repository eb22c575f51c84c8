# 服务层异常定义
from typing import Optional


class ResultsServiceError(Exception):
    """服务层异常基类"""
    pass


class ValidationError(ResultsServiceError):
    """客户端校验失败, 请求不会发送到后端"""
    pass


class ServerError(ResultsServiceError):
    """后端返回错误"""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class PublicationError(ServerError):
    """发布操作失败"""
    pass


class PromotionSubmissionError(ServerError):
    """晋级决定提交失败"""
    pass


class DataIntegrityError(ResultsServiceError):
    """本地存储数据结构损坏"""
    pass


class ConfirmationRequiredError(ResultsServiceError):
    """操作需要用户确认"""

    def __init__(self, message: str, pending_count: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.pending_count = pending_count


class OperationInProgressError(ResultsServiceError):
    """同一操作正在进行中"""
    pass


class CalculationInProgressError(OperationInProgressError):
    """计算任务正在运行"""
    pass


class InvalidTransitionError(ResultsServiceError):
    """非法的状态转换"""
    pass
