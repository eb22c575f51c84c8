from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any


class SubjectScore(BaseModel):
    """单科成绩模型"""
    subject_id: int
    subject_name: str = ""
    score: Optional[float] = None
    coefficient: float = 0.0
    weighted_score: Optional[float] = None
    rank_in_subject: Optional[int] = None
    is_published: bool = False


class StudentResult(BaseModel):
    """学生时段成绩模型(统一格式)"""
    student_id: int
    student_name: str = ""
    average: float = Field(0.0, ge=0.0, le=20.0, description="平均分(20分制)")
    rank: Optional[int] = None
    is_published: bool = False
    total_points: float = 0.0
    total_coefficient: float = 0.0
    class_name: Optional[str] = None
    subject_scores: List[SubjectScore] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ClassStatistics(BaseModel):
    """班级统计模型(后端提供, 等级分布字段可能缺失)"""
    total_students: int = 0
    passed_students: int = 0
    failed_students: int = 0
    pass_percentage: float = 0.0
    class_average: float = 0.0
    highest_average: float = 0.0
    lowest_average: float = 0.0
    excellent_count: Optional[int] = None
    very_good_count: Optional[int] = None
    good_count: Optional[int] = None
    average_count: Optional[int] = None
    needs_improvement_count: Optional[int] = None
    subject_statistics: List[Dict[str, Any]] = Field(default_factory=list)


class EnhancedClassStatistics(BaseModel):
    """增强后的班级统计模型, 等级分布字段保证存在"""
    total_students: int = 0
    passed_students: int = 0
    failed_students: int = 0
    pass_percentage: float = 0.0
    class_average: float = 0.0
    highest_average: float = 0.0
    lowest_average: float = 0.0
    excellent_count: int = 0
    very_good_count: int = 0
    good_count: int = 0
    average_count: int = 0
    needs_improvement_count: int = 0
    subject_statistics: List[Dict[str, Any]] = Field(default_factory=list)
    distribution_source: str = Field("backend", description="等级分布来源: backend 或 client")


class StudentBand(BaseModel):
    """单个学生的等级和及格状态"""
    student_id: int
    student_name: str = ""
    average: float
    band: str = Field(..., description="等级: excellent, very_good, good, average, needs_improvement")
    status: str = Field(..., description="pass 或 fail")


class StatisticsOverview(BaseModel):
    """班级统计概览模型"""
    statistics: EnhancedClassStatistics
    top_students: List[StudentResult]
    worst_students: List[StudentResult]
    distribution_percentages: Dict[str, float]
    pass_rate: float = Field(0.0, description="及格率(按学生总数保护除零)")
    student_bands: List[StudentBand] = Field(default_factory=list)


class ResultPage(BaseModel):
    """成绩分页模型"""
    count: int = 0
    next: Optional[str] = None
    previous: Optional[str] = None
    results: List[StudentResult] = Field(default_factory=list)
    class_statistics: Dict[str, Any] = Field(default_factory=dict)
    class_name: Optional[str] = None
    total_pages: int = 0
