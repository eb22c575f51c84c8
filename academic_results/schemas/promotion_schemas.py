from pydantic import BaseModel, Field
from typing import List, Optional, Any
from datetime import datetime

from ..database.enums import PromotionStatus


class PromotionDecision(BaseModel):
    """后端晋级决定模型"""
    id: Optional[int] = None
    student_id: Optional[int] = None
    status: PromotionStatus = PromotionStatus.PENDING
    is_manual: bool = False
    remarks: Optional[str] = None
    decision_date: Optional[datetime] = None
    decided_by: Optional[Any] = None


class StudentWithDecision(BaseModel):
    """班级学生及其晋级决定"""
    id: int
    first_name: str = ""
    last_name: str = ""
    matricule: Optional[str] = None
    promotion_decision: Optional[PromotionDecision] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PromotionDraftEntry(BaseModel):
    """晋级决定草稿条目"""
    student_id: int
    full_name: str = ""
    matricule: Optional[str] = None
    promotion_status: PromotionStatus = PromotionStatus.PENDING
    remarks: str = ""
    fetched_promotion_decision: Optional[PromotionDecision] = None


class DecisionSubmission(BaseModel):
    """提交给后端的单条决定"""
    student_id: int
    status: PromotionStatus
    remarks: str = ""


class PromotionSessionState(BaseModel):
    """晋级草稿会话状态"""
    class_id: int
    academic_year_id: int
    is_open: bool
    draft_active: bool
    entries: List[PromotionDraftEntry] = Field(default_factory=list)
    pending_count: int = 0
