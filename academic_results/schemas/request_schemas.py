from pydantic import BaseModel, Field, model_validator
from typing import List, Optional

from .. import config
from ..database.enums import PublicationScope, PromotionStatus


class CalculationRequest(BaseModel):
    """启动计算请求模型"""
    class_id: int = Field(..., description="班级ID", gt=0)
    page: int = Field(1, description="刷新的分页视图页码", ge=1)
    page_size: int = Field(config.RESULTS_PAGE_SIZE, description="每页条数", ge=1)
    sort_column: Optional[str] = Field(None, description="排序列")
    sort_direction: str = Field("asc", description="排序方向", pattern="^(asc|desc)$")

    def page_params(self) -> dict:
        return {
            "page": self.page,
            "page_size": self.page_size,
            "sort_column": self.sort_column,
            "sort_direction": self.sort_direction,
        }


class PublicationRequest(BaseModel):
    """发布请求模型"""
    class_id: int = Field(..., description="班级ID", gt=0)
    scope: PublicationScope = Field(..., description="发布范围")
    publish: bool = Field(..., description="发布或取消发布")
    student_ids: List[int] = Field(default_factory=list, description="选中的学生ID")
    subject_id: Optional[int] = Field(None, description="班级科目ID(科目-选中学生范围必填)")

    class Config:
        json_schema_extra = {
            "example": {
                "class_id": 12,
                "scope": "selected_students",
                "publish": True,
                "student_ids": [101, 102]
            }
        }


class OpenSessionRequest(BaseModel):
    """打开晋级草稿会话请求模型"""
    force_refetch: bool = Field(False, description="是否强制从后端重新获取基线")


class EntryUpdateRequest(BaseModel):
    """修改单个草稿条目请求模型"""
    status: Optional[PromotionStatus] = Field(None, description="晋级状态")
    remarks: Optional[str] = Field(None, description="备注", max_length=1000)

    @model_validator(mode="after")
    def check_any_field(self):
        if self.status is None and self.remarks is None:
            raise ValueError("status 或 remarks 至少提供一个")
        return self


class BulkUpdateRequest(BaseModel):
    """批量修改状态请求模型"""
    status: PromotionStatus = Field(..., description="晋级状态")
    filter_text: str = Field("", description="筛选文本(姓名或学号)")


class ConfirmationRequest(BaseModel):
    """需要确认的操作请求模型"""
    confirmed: bool = Field(False, description="用户是否已确认")
