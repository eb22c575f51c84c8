from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from .result_schemas import ResultPage


class ResultsResponse(BaseModel):
    """成绩列表响应模型"""
    granularity: str
    period_id: int
    class_id: int
    page: ResultPage
    search: Optional[str] = None
    matching_student_ids: List[int] = Field(default_factory=list, description="筛选后全选的学生ID")
    has_subject_results: Optional[bool] = None


class CalculationJobResponse(BaseModel):
    """计算任务响应模型"""
    granularity: str
    period_id: int
    class_id: int
    phase: str
    step: int
    total_steps: int
    step_labels: List[str]
    progress: float = Field(..., ge=0.0, le=100.0, description="进度百分比")
    error: Optional[str] = None
    step_scoped_failure: Optional[bool] = None
    can_retry: bool = False
    can_dismiss: bool = True
    started_at: Optional[str] = None


class PublicationResponse(BaseModel):
    """发布响应模型"""
    performed: bool
    scope: str
    publish: bool
    target_count: int = 0


class SubmissionResponse(BaseModel):
    """晋级决定提交响应模型"""
    message: str
    submitted_count: int
    backend_response: Optional[Any] = None


class DiffResponse(BaseModel):
    """草稿差异响应模型"""
    class_id: int
    academic_year_id: int
    changes: List[Dict[str, Any]] = Field(default_factory=list)


class NotificationResponse(BaseModel):
    """通知响应模型"""
    level: str
    message: str
    description: Optional[str] = None
    scope: Optional[str] = None
    created_at: str
