# 班级统计聚合器
import pandas as pd
import numpy as np
import logging
from typing import Dict, Any, List, Optional, Union

from ..database.enums import GradeBand
from ..schemas.result_schemas import (
    StudentResult, ClassStatistics, EnhancedClassStatistics, StatisticsOverview, StudentBand
)

logger = logging.getLogger(__name__)


class GradeBandConfig:
    """等级分段配置(20分制, 固定阈值)"""

    EXCELLENT_THRESHOLD = 16.0
    VERY_GOOD_THRESHOLD = 14.0
    GOOD_THRESHOLD = 12.0
    AVERAGE_THRESHOLD = 10.0
    PASS_MARK = 10.0

    # 等级对应的统计字段
    COUNT_FIELDS = {
        GradeBand.EXCELLENT: 'excellent_count',
        GradeBand.VERY_GOOD: 'very_good_count',
        GradeBand.GOOD: 'good_count',
        GradeBand.AVERAGE: 'average_count',
        GradeBand.NEEDS_IMPROVEMENT: 'needs_improvement_count',
    }

    @classmethod
    def classify(cls, average: float) -> GradeBand:
        """单个平均分所属等级"""
        if average >= cls.EXCELLENT_THRESHOLD:
            return GradeBand.EXCELLENT
        if average >= cls.VERY_GOOD_THRESHOLD:
            return GradeBand.VERY_GOOD
        if average >= cls.GOOD_THRESHOLD:
            return GradeBand.GOOD
        if average >= cls.AVERAGE_THRESHOLD:
            return GradeBand.AVERAGE
        return GradeBand.NEEDS_IMPROVEMENT


def safe_percentage(count: Union[int, float], total: Union[int, float], digits: int = 2) -> float:
    """百分比计算, 总数为零时返回0"""
    try:
        if not total or total <= 0:
            return 0.0
        return round(float(count) / float(total) * 100, digits)
    except (TypeError, ValueError):
        return 0.0


def classify_average(average: float) -> GradeBand:
    return GradeBandConfig.classify(average)


def pass_status(average: float) -> str:
    return "pass" if average >= GradeBandConfig.PASS_MARK else "fail"


class StatisticsAggregator:
    """班级统计聚合器

    后端已给出有效等级分布时直接采用, 否则基于全量成绩在本地重新计算。
    任何情况下都不抛出异常。
    """

    def enhance(
        self,
        class_statistics: Optional[Union[Dict[str, Any], ClassStatistics]],
        results: Optional[List[StudentResult]]
    ) -> EnhancedClassStatistics:
        """生成增强后的班级统计"""
        results = results or []
        backend = self._coerce_statistics(class_statistics)

        try:
            if self._backend_distribution_trusted(backend, results):
                return self._from_backend(backend, source="backend")

            counts = self._calculate_distribution(results)
            enhanced = self._from_backend(backend, source="client")
            for band, field in GradeBandConfig.COUNT_FIELDS.items():
                setattr(enhanced, field, counts[band])
            return enhanced

        except Exception as e:
            logger.error(f"Error enhancing class statistics, using backend values: {str(e)}")
            return self._from_backend(backend, source="backend")

    def top_students(self, results: Optional[List[StudentResult]], limit: int = 3) -> List[StudentResult]:
        """平均分最高的学生(稳定排序)"""
        return self._rank_by_average(results, ascending=False, limit=limit)

    def worst_students(self, results: Optional[List[StudentResult]], limit: int = 3) -> List[StudentResult]:
        """平均分最低的学生(稳定排序)"""
        return self._rank_by_average(results, ascending=True, limit=limit)

    def build_overview(
        self,
        class_statistics: Optional[Union[Dict[str, Any], ClassStatistics]],
        results: Optional[List[StudentResult]]
    ) -> StatisticsOverview:
        """班级统计概览: 增强统计、前后三名、等级占比和每个学生的等级"""
        enhanced = self.enhance(class_statistics, results)
        total = enhanced.total_students or len(results or [])

        distribution_percentages = {
            band.value: safe_percentage(getattr(enhanced, field), total)
            for band, field in GradeBandConfig.COUNT_FIELDS.items()
        }

        return StatisticsOverview(
            statistics=enhanced,
            top_students=self.top_students(results),
            worst_students=self.worst_students(results),
            distribution_percentages=distribution_percentages,
            pass_rate=safe_percentage(enhanced.passed_students, total),
            student_bands=[
                StudentBand(
                    student_id=result.student_id,
                    student_name=result.student_name,
                    average=result.average,
                    band=classify_average(result.average).value,
                    status=pass_status(result.average)
                )
                for result in results or []
            ],
        )

    def _coerce_statistics(self, class_statistics: Any) -> ClassStatistics:
        if isinstance(class_statistics, ClassStatistics):
            return class_statistics
        if not isinstance(class_statistics, dict):
            return ClassStatistics()

        try:
            return ClassStatistics.model_validate(class_statistics)
        except Exception as e:
            logger.warning(f"Malformed class statistics from backend, defaulting to zero: {str(e)}")
            # 保留可解析的等级字段, 其余取默认值
            cleaned = {}
            for field, value in class_statistics.items():
                if field not in ClassStatistics.model_fields:
                    continue
                try:
                    ClassStatistics.model_validate({field: value})
                    cleaned[field] = value
                except Exception:
                    continue
            return ClassStatistics.model_validate(cleaned)

    def _backend_distribution_trusted(self, backend: ClassStatistics, results: List[StudentResult]) -> bool:
        if not results:
            return True

        counts = [getattr(backend, field) for field in GradeBandConfig.COUNT_FIELDS.values()]
        if any(count is None for count in counts):
            return False
        return any(count > 0 for count in counts)

    def _calculate_distribution(self, results: List[StudentResult]) -> Dict[GradeBand, int]:
        """按固定阈值计算五级分布"""
        averages = np.array([result.average for result in results], dtype=float)

        excellent_mask = averages >= GradeBandConfig.EXCELLENT_THRESHOLD
        very_good_mask = (averages >= GradeBandConfig.VERY_GOOD_THRESHOLD) & \
                         (averages < GradeBandConfig.EXCELLENT_THRESHOLD)
        good_mask = (averages >= GradeBandConfig.GOOD_THRESHOLD) & \
                    (averages < GradeBandConfig.VERY_GOOD_THRESHOLD)
        average_mask = (averages >= GradeBandConfig.AVERAGE_THRESHOLD) & \
                       (averages < GradeBandConfig.GOOD_THRESHOLD)
        # NaN 也归入待提高, 保证总数等于学生数
        needs_improvement_mask = ~(excellent_mask | very_good_mask | good_mask | average_mask)

        return {
            GradeBand.EXCELLENT: int(np.sum(excellent_mask)),
            GradeBand.VERY_GOOD: int(np.sum(very_good_mask)),
            GradeBand.GOOD: int(np.sum(good_mask)),
            GradeBand.AVERAGE: int(np.sum(average_mask)),
            GradeBand.NEEDS_IMPROVEMENT: int(np.sum(needs_improvement_mask)),
        }

    def _from_backend(self, backend: ClassStatistics, source: str) -> EnhancedClassStatistics:
        data = backend.model_dump()
        for field in GradeBandConfig.COUNT_FIELDS.values():
            if data.get(field) is None:
                data[field] = 0
        data["distribution_source"] = source
        return EnhancedClassStatistics.model_validate(data)

    def _rank_by_average(
        self,
        results: Optional[List[StudentResult]],
        ascending: bool,
        limit: int
    ) -> List[StudentResult]:
        if not results:
            return []

        try:
            frame = pd.DataFrame({
                'position': range(len(results)),
                'average': [result.average for result in results],
            })
            ordered = frame.sort_values('average', ascending=ascending, kind='mergesort')
            return [results[position] for position in ordered['position'].head(limit)]
        except Exception as e:
            logger.error(f"Error ranking students by average: {str(e)}")
            return []
