# 统计计算模块
from .statistics_aggregator import (
    StatisticsAggregator,
    GradeBandConfig,
    safe_percentage,
    classify_average,
    pass_status
)

__all__ = [
    'StatisticsAggregator',
    'GradeBandConfig',
    'safe_percentage',
    'classify_average',
    'pass_status'
]
