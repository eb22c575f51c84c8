# 枚举定义
import enum


class Granularity(str, enum.Enum):
    """成绩时间粒度枚举"""
    SEQUENCE = "sequence"
    TERM = "term"
    YEAR = "year"


class PromotionStatus(str, enum.Enum):
    """晋级决定状态枚举"""
    PENDING = "pending"
    PROMOTED = "promoted"
    CONDITIONAL = "conditional"
    REPEATED = "repeated"
    GRADUATED = "graduated"


# 管理员可在草稿中设置的状态
EDITABLE_PROMOTION_STATUSES = frozenset({
    PromotionStatus.PENDING,
    PromotionStatus.PROMOTED,
    PromotionStatus.CONDITIONAL,
    PromotionStatus.REPEATED,
})


class PublicationScope(str, enum.Enum):
    """发布范围枚举"""
    ALL_SUBJECTS = "all_subjects"
    ALL_STUDENTS = "all_students"
    SELECTED_STUDENTS = "selected_students"
    SUBJECT_FOR_SELECTED = "subject_for_selected"


# 需要显式学生列表的发布范围
TARGETED_SCOPES = frozenset({
    PublicationScope.SELECTED_STUDENTS,
    PublicationScope.SUBJECT_FOR_SELECTED,
})


class GradeBand(str, enum.Enum):
    """成绩等级分段枚举"""
    EXCELLENT = "excellent"
    VERY_GOOD = "very_good"
    GOOD = "good"
    AVERAGE = "average"
    NEEDS_IMPROVEMENT = "needs_improvement"


class CalculationPhase(str, enum.Enum):
    """计算任务阶段枚举"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
