import pytest

from academic_results.calculation.statistics_aggregator import (
    StatisticsAggregator, GradeBandConfig, safe_percentage, classify_average, pass_status
)
from academic_results.database.enums import GradeBand
from academic_results.schemas.result_schemas import ClassStatistics

from conftest import make_result


class TestGradeBands:
    """测试等级分段"""

    def test_classify_boundaries(self):
        """测试阈值边界归属"""
        assert classify_average(20.0) == GradeBand.EXCELLENT
        assert classify_average(16.0) == GradeBand.EXCELLENT
        assert classify_average(15.99) == GradeBand.VERY_GOOD
        assert classify_average(14.0) == GradeBand.VERY_GOOD
        assert classify_average(12.0) == GradeBand.GOOD
        assert classify_average(10.0) == GradeBand.AVERAGE
        assert classify_average(9.99) == GradeBand.NEEDS_IMPROVEMENT
        assert classify_average(0.0) == GradeBand.NEEDS_IMPROVEMENT

    def test_pass_status(self):
        assert pass_status(GradeBandConfig.PASS_MARK) == "pass"
        assert pass_status(9.5) == "fail"

    def test_safe_percentage(self):
        """测试除零保护"""
        assert safe_percentage(3, 0) == 0.0
        assert safe_percentage(1, 3) == 33.33
        assert safe_percentage(5, 10) == 50.0
        assert safe_percentage("x", 10) == 0.0


class TestStatisticsAggregator:
    """测试班级统计聚合器"""

    def setup_method(self):
        self.aggregator = StatisticsAggregator()
        self.results = [
            make_result(i + 1, average)
            for i, average in enumerate([20, 18, 16, 14, 12, 10, 8, 6, 4, 2])
        ]

    def test_client_distribution_when_backend_missing(self):
        """后端缺少等级分布时在本地计算"""
        enhanced = self.aggregator.enhance({"total_students": 10}, self.results)

        assert enhanced.excellent_count == 3
        assert enhanced.very_good_count == 1
        assert enhanced.good_count == 1
        assert enhanced.average_count == 1
        assert enhanced.needs_improvement_count == 4
        assert enhanced.distribution_source == "client"

    def test_reference_distribution(self):
        """测试示例分布 [20..2] 的阈值划分"""
        results = [make_result(i + 1, a) for i, a in enumerate([20, 18, 16, 14, 12, 10, 8, 6, 4, 2])]
        enhanced = self.aggregator.enhance({}, results)

        counts = [
            enhanced.excellent_count,
            enhanced.very_good_count,
            enhanced.good_count,
            enhanced.average_count,
            enhanced.needs_improvement_count,
        ]
        # 16 及以上为优秀: 20, 18, 16
        assert counts == [3, 1, 1, 1, 4]
        assert sum(counts) == len(results)

    def test_client_distribution_sums_to_result_count(self):
        """本地计算的分布总数等于学生数"""
        results = [make_result(i, (i * 1.37) % 20) for i in range(1, 38)]
        enhanced = self.aggregator.enhance(None, results)

        total = sum(getattr(enhanced, field) for field in GradeBandConfig.COUNT_FIELDS.values())
        assert total == len(results)

    def test_trust_backend_distribution(self):
        """后端五项分布齐全且非全零时直接采用"""
        backend = {
            "total_students": 10,
            "excellent_count": 5,
            "very_good_count": 0,
            "good_count": 0,
            "average_count": 0,
            "needs_improvement_count": 5,
        }
        enhanced = self.aggregator.enhance(backend, self.results)

        assert enhanced.excellent_count == 5
        assert enhanced.needs_improvement_count == 5
        assert enhanced.distribution_source == "backend"

    def test_all_zero_backend_distribution_recomputed(self):
        """后端分布全为零时重新计算"""
        backend = {field: 0 for field in GradeBandConfig.COUNT_FIELDS.values()}
        enhanced = self.aggregator.enhance(backend, self.results)

        assert enhanced.distribution_source == "client"
        assert enhanced.excellent_count == 3

    def test_partial_backend_distribution_recomputed(self):
        """后端缺少任一分布字段时重新计算"""
        backend = ClassStatistics(excellent_count=7, very_good_count=1)
        enhanced = self.aggregator.enhance(backend, self.results)

        assert enhanced.distribution_source == "client"
        assert enhanced.excellent_count == 3

    def test_empty_results_keep_backend_values(self):
        """全量列表为空时使用后端值, 缺失默认为零"""
        enhanced = self.aggregator.enhance({"total_students": 0, "excellent_count": 2}, [])

        assert enhanced.excellent_count == 2
        assert enhanced.very_good_count == 0
        assert enhanced.needs_improvement_count == 0
        assert enhanced.distribution_source == "backend"

    def test_malformed_backend_statistics_never_raise(self):
        """后端统计格式错误时不抛出异常"""
        enhanced = self.aggregator.enhance({"total_students": "many", "class_average": 11.5}, self.results)

        assert enhanced.total_students == 0
        assert enhanced.class_average == 11.5
        assert enhanced.excellent_count == 3

    def test_top_and_worst_students(self):
        """测试前三名和后三名"""
        top = self.aggregator.top_students(self.results)
        worst = self.aggregator.worst_students(self.results)

        assert [r.average for r in top] == [20, 18, 16]
        assert [r.average for r in worst] == [2, 4, 6]

    def test_top_students_stable_on_ties(self):
        """平均分相同保持原有顺序"""
        results = [
            make_result(1, 15.0, rank=1),
            make_result(2, 15.0, rank=1),
            make_result(3, 15.0, rank=1),
            make_result(4, 15.0, rank=1),
        ]
        top = self.aggregator.top_students(results)
        worst = self.aggregator.worst_students(results)

        assert [r.student_id for r in top] == [1, 2, 3]
        assert [r.student_id for r in worst] == [1, 2, 3]

    @pytest.mark.parametrize("size", [0, 1, 2, 3, 5])
    def test_top_students_length(self, size):
        results = [make_result(i + 1, float(i)) for i in range(size)]
        assert len(self.aggregator.top_students(results)) == min(3, size)
        assert len(self.aggregator.worst_students(results)) == min(3, size)

    def test_build_overview(self):
        """测试统计概览"""
        overview = self.aggregator.build_overview(
            {"total_students": 10, "passed_students": 6},
            self.results
        )

        assert overview.statistics.excellent_count == 3
        assert overview.distribution_percentages["excellent"] == 30.0
        assert overview.distribution_percentages["needs_improvement"] == 40.0
        assert overview.pass_rate == 60.0
        assert len(overview.top_students) == 3

    def test_build_overview_student_bands(self):
        """每个学生带有等级和及格状态, 16分为优秀, 10分为及格"""
        overview = self.aggregator.build_overview({"total_students": 10}, self.results)

        bands = {band.student_id: band for band in overview.student_bands}
        assert len(bands) == 10
        assert bands[3].band == "excellent"
        assert bands[4].band == "very_good"
        assert bands[6].band == "average"
        assert bands[6].status == "pass"
        assert bands[7].band == "needs_improvement"
        assert bands[7].status == "fail"
        assert sum(1 for band in overview.student_bands if band.status == "pass") == 6

    def test_build_overview_empty_class(self):
        """空班级的百分比为零"""
        overview = self.aggregator.build_overview({}, [])

        assert overview.pass_rate == 0.0
        assert all(value == 0.0 for value in overview.distribution_percentages.values())
        assert overview.top_students == []
        assert overview.student_bands == []
