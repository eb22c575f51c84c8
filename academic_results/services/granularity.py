# 成绩粒度适配器
import math
import logging
from abc import ABC
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Type

from .. import config
from ..clients.backend_client import SchoolBackendClient
from ..database.enums import Granularity, PublicationScope
from ..schemas.result_schemas import StudentResult, SubjectScore, ResultPage
from .exceptions import ValidationError

logger = logging.getLogger(__name__)

MAX_AVERAGE = 20.0


@dataclass(frozen=True)
class PeriodKey:
    """(粒度, 时段, 班级) 组合键"""
    granularity: Granularity
    period_id: int
    class_id: int

    def components(self) -> List[str]:
        return [self.granularity.value, str(self.period_id), str(self.class_id)]

    def __str__(self) -> str:
        return f"{self.granularity.value}:{self.period_id}:{self.class_id}"


@dataclass(frozen=True)
class CalculationStep:
    """远程计算步骤"""
    name: str
    label: str
    path: str


def _to_float(value: Any, default: float = 0.0) -> float:
    """安全转换为浮点数"""
    if value is None or value == "":
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result):
        return default
    return result


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _first_present(raw: Dict[str, Any], fields: List[str]) -> Any:
    for field in fields:
        if raw.get(field) is not None:
            return raw[field]
    return None


class GranularityAdapter(ABC):
    """粒度适配器基类

    子类只声明端点和字段映射, 取数、计算、发布和格式统一都在基类中完成。
    """

    granularity: Granularity
    results_path: str
    calculation_steps_config: List[CalculationStep] = []
    subject_publish_path: str
    overall_publish_path: str
    subject_check_path: Optional[str] = None

    # 后端原始字段名
    name_field: str = "student_name"
    average_field: str = "average"
    rank_field: str = "rank"
    default_sort_column: str = "rank"

    def __init__(self, client: SchoolBackendClient, full_page_size: int = config.FULL_RESULTS_PAGE_SIZE):
        self.client = client
        self.full_page_size = full_page_size

    @property
    def sort_columns(self) -> Dict[str, str]:
        """统一排序列名到后端列名的映射"""
        return {
            "student_name": self.name_field,
            "average": self.average_field,
            "rank": self.rank_field,
        }

    def validate_sort_column(self, sort_column: Optional[str]) -> Optional[str]:
        """只接受统一列名或本粒度的后端列名"""
        if sort_column is None:
            return None
        allowed = set(self.sort_columns) | set(self.sort_columns.values()) | {self.default_sort_column}
        if sort_column not in allowed:
            raise ValidationError(
                f"Unsupported sort column '{sort_column}' for {self.granularity.value} results"
            )
        return sort_column

    @property
    def supports_subject_check(self) -> bool:
        return self.subject_check_path is not None

    @property
    def calculation_steps(self) -> List[CalculationStep]:
        return list(self.calculation_steps_config)

    def _format(self, path: str, period_id: int) -> str:
        return path.format(period_id=period_id)

    async def fetch_page(
        self,
        period_id: int,
        class_id: int,
        page: int = 1,
        page_size: int = config.RESULTS_PAGE_SIZE,
        sort_column: Optional[str] = None,
        sort_direction: str = "asc"
    ) -> ResultPage:
        """获取分页排序后的成绩"""
        column = self.sort_columns.get(sort_column or "", sort_column) or self.default_sort_column
        raw = await self.client.get(
            self._format(self.results_path, period_id),
            params={
                "class_id": class_id,
                "page": page,
                "page_size": page_size,
                "sortColumn": column,
                "sortDirection": sort_direction or "asc",
            },
            context=f"Fetch {self.granularity.value} results"
        )
        return self.normalize_page(raw, page_size)

    async def fetch_all(self, period_id: int, class_id: int) -> ResultPage:
        """获取全部成绩(按排名排序), 用于统计和前后三名"""
        return await self.fetch_page(
            period_id,
            class_id,
            page=1,
            page_size=self.full_page_size,
            sort_column=self.default_sort_column,
            sort_direction="asc"
        )

    async def run_step(self, step: CalculationStep, period_id: int, class_id: int) -> Any:
        """执行单个远程计算步骤"""
        logger.info(f"Running {self.granularity.value} calculation step '{step.name}' for period {period_id}, class {class_id}")
        return await self.client.post(
            self._format(step.path, period_id),
            params={"class_id": class_id},
            context=step.label
        )

    async def has_subject_results(self, period_id: int, class_id: int) -> bool:
        """检查科目成绩是否存在"""
        if not self.supports_subject_check:
            return False

        raw = await self.client.get(
            self._format(self.subject_check_path, period_id),
            params={"class_id": class_id},
            context=f"Check {self.granularity.value} subject results"
        )
        if isinstance(raw, dict):
            results = raw.get("results")
            if isinstance(results, dict):
                results = results.get("results")
            return bool(results)
        return bool(raw)

    async def publish(
        self,
        scope: PublicationScope,
        period_id: int,
        class_id: int,
        value: bool,
        student_ids: Optional[List[int]] = None,
        subject_id: Optional[int] = None
    ) -> Any:
        """按范围发布或取消发布"""
        payload: Dict[str, Any] = {"publish": value}
        if scope in (PublicationScope.ALL_SUBJECTS, PublicationScope.SUBJECT_FOR_SELECTED):
            path = self.subject_publish_path
        else:
            path = self.overall_publish_path

        if scope in (PublicationScope.SELECTED_STUDENTS, PublicationScope.SUBJECT_FOR_SELECTED) and student_ids:
            payload["student_ids"] = list(student_ids)
        if scope == PublicationScope.SUBJECT_FOR_SELECTED and subject_id:
            payload["class_subject_id"] = subject_id

        action = "Publish" if value else "Unpublish"
        return await self.client.post(
            self._format(path, period_id),
            params={"class_id": class_id},
            payload=payload,
            context=f"{action} {self.granularity.value} {scope.value}"
        )

    def normalize_result(self, raw: Dict[str, Any]) -> StudentResult:
        """将后端原始成绩转换为统一格式"""
        average = _to_float(_first_present(raw, [self.average_field, "average", "yearly_average"]))
        if average < 0 or average > MAX_AVERAGE:
            logger.warning(f"Average {average} for student {raw.get('student_id')} out of range, clamping")
            average = min(max(average, 0.0), MAX_AVERAGE)

        subject_scores = [
            SubjectScore(
                subject_id=_to_int(subject.get("subject_id")) or 0,
                subject_name=subject.get("subject_name") or "",
                score=_to_float(subject.get("score"), default=None),
                coefficient=_to_float(subject.get("coefficient")),
                weighted_score=_to_float(subject.get("weighted_score"), default=None),
                rank_in_subject=_to_int(subject.get("rank_in_subject")),
                is_published=bool(subject.get("is_published", False)),
            )
            for subject in raw.get("subject_scores") or []
            if isinstance(subject, dict)
        ]

        return StudentResult(
            student_id=_to_int(raw.get("student_id")) or 0,
            student_name=_first_present(raw, [self.name_field, "student_name", "student"]) or "",
            average=average,
            rank=_to_int(_first_present(raw, [self.rank_field, "rank", "class_rank"])),
            is_published=bool(raw.get("is_published", False)),
            total_points=_to_float(raw.get("total_points")),
            total_coefficient=_to_float(raw.get("total_coefficient")),
            class_name=raw.get("class_name"),
            subject_scores=subject_scores,
        )

    def normalize_page(self, raw: Any, page_size: int) -> ResultPage:
        """将后端分页响应转换为统一格式"""
        if not isinstance(raw, dict):
            return ResultPage()

        body = raw.get("results")
        if isinstance(body, dict):
            raw_results = body.get("results") or []
            class_statistics = body.get("class_statistics") or {}
            class_name = body.get("class_name")
        else:
            raw_results = body or []
            class_statistics = raw.get("class_statistics") or {}
            class_name = raw.get("class_name")

        results = [self.normalize_result(item) for item in raw_results if isinstance(item, dict)]
        count = _to_int(raw.get("count"))
        if count is None:
            count = len(results)
        if not class_name and results:
            class_name = results[0].class_name

        return ResultPage(
            count=count,
            next=raw.get("next"),
            previous=raw.get("previous"),
            results=results,
            class_statistics=class_statistics if isinstance(class_statistics, dict) else {},
            class_name=class_name,
            total_pages=math.ceil(count / page_size) if page_size else 0,
        )


class SequenceResultsAdapter(GranularityAdapter):
    """考试序列成绩适配器"""

    granularity = Granularity.SEQUENCE
    results_path = "results/sequence-results/{period_id}/"
    calculation_steps_config = [
        CalculationStep("overall", "Calculating results", "results/sequence-results/calculate/{period_id}/"),
    ]
    subject_publish_path = "results/sequence-scores/publish/{period_id}/"
    overall_publish_path = "results/sequence-results/publish/{period_id}/"
    name_field = "student"


class TermResultsAdapter(GranularityAdapter):
    """学期成绩适配器"""

    granularity = Granularity.TERM
    results_path = "results/term-overall-results/{period_id}/"
    calculation_steps_config = [
        CalculationStep("subjects", "Calculating subject results", "results/term-results/{period_id}/"),
        CalculationStep("overall", "Calculating overall results", "results/term-overall-results/{period_id}/"),
    ]
    subject_publish_path = "results/term-results/{period_id}/publish/"
    overall_publish_path = "results/term-overall-results/{period_id}/publish/"


class YearResultsAdapter(GranularityAdapter):
    """学年成绩适配器"""

    granularity = Granularity.YEAR
    results_path = "results/yearly-results/{period_id}/"
    calculation_steps_config = [
        CalculationStep("subjects", "Calculating subject results", "results/yearly-subject-results/{period_id}/"),
        CalculationStep("overall", "Calculating overall results", "results/yearly-results/{period_id}/"),
    ]
    subject_publish_path = "results/yearly-subject-results/{period_id}/publish/"
    overall_publish_path = "results/yearly-results/{period_id}/publish/"
    subject_check_path = "results/yearly-subject-results/{period_id}/"
    average_field = "yearly_average"
    rank_field = "class_rank"
    default_sort_column = "class_rank"


# 全局适配器注册表
_adapter_registry: Dict[Granularity, Type[GranularityAdapter]] = {}


def register_adapter(adapter_class: Type[GranularityAdapter]) -> None:
    """注册粒度适配器"""
    if not issubclass(adapter_class, GranularityAdapter):
        raise ValueError(f"适配器类 {adapter_class.__name__} 必须继承 GranularityAdapter")
    _adapter_registry[adapter_class.granularity] = adapter_class
    logger.debug(f"Registered adapter {adapter_class.__name__} for {adapter_class.granularity.value}")


def get_adapter_class(granularity: Granularity) -> Type[GranularityAdapter]:
    if granularity not in _adapter_registry:
        raise ValueError(f"未找到粒度适配器: {granularity}")
    return _adapter_registry[granularity]


def create_adapters(client: SchoolBackendClient, **kwargs) -> Dict[Granularity, GranularityAdapter]:
    """为所有已注册粒度创建适配器实例"""
    return {granularity: adapter_class(client, **kwargs) for granularity, adapter_class in _adapter_registry.items()}


for _adapter_class in (SequenceResultsAdapter, TermResultsAdapter, YearResultsAdapter):
    register_adapter(_adapter_class)
