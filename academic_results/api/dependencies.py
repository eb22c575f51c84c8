# 接口层依赖与错误映射
import logging
from typing import Dict, Optional

from fastapi import HTTPException

from .. import config
from ..calculation.statistics_aggregator import StatisticsAggregator
from ..clients.backend_client import SchoolBackendClient
from ..database.cache import ResultSetCache, create_redis_client
from ..database.connection import SessionLocal
from ..database.draft_repository import (
    DraftRepository, InMemoryDraftRepository, RedisDraftRepository, SqlDraftRepository
)
from ..database.enums import Granularity
from ..services.calculation_orchestrator import CalculationOrchestrator
from ..services.exceptions import (
    ResultsServiceError, ValidationError, ServerError, ConfirmationRequiredError,
    OperationInProgressError, InvalidTransitionError
)
from ..services.granularity import GranularityAdapter, PeriodKey, create_adapters
from ..services.notifications import NotificationChannel
from ..services.promotion_draft_store import PromotionDraftRegistry
from ..services.publication_controller import PublicationController

logger = logging.getLogger(__name__)


class ServiceContainer:
    """服务实例容器, 应用内共享"""

    def __init__(
        self,
        client: SchoolBackendClient,
        cache: ResultSetCache,
        draft_repository: DraftRepository,
        notifier: Optional[NotificationChannel] = None,
        display_delay: float = config.CALCULATION_DISPLAY_DELAY
    ):
        self.client = client
        self.cache = cache
        self.notifier = notifier or NotificationChannel()
        self.adapters: Dict[Granularity, GranularityAdapter] = create_adapters(client)
        self.aggregator = StatisticsAggregator()
        self.orchestrator = CalculationOrchestrator(
            self.adapters, cache, self.notifier, display_delay=display_delay
        )
        self.publication = PublicationController(self.adapters, cache, self.notifier)
        self.promotions = PromotionDraftRegistry(client, draft_repository, cache, self.notifier)

    def adapter(self, granularity: Granularity) -> GranularityAdapter:
        return self.adapters[granularity]


def build_draft_repository(backend: str = config.DRAFT_STORAGE_BACKEND, redis_client=None) -> DraftRepository:
    """按配置创建草稿仓库"""
    if backend == "memory":
        return InMemoryDraftRepository()
    if backend == "redis":
        return RedisDraftRepository(redis_client or create_redis_client())
    if backend == "sql":
        return SqlDraftRepository(SessionLocal)
    raise ValueError(f"Unsupported draft storage backend: {backend}")


def build_container() -> ServiceContainer:
    redis_client = create_redis_client()
    container = ServiceContainer(
        client=SchoolBackendClient(),
        cache=ResultSetCache(redis_client),
        draft_repository=build_draft_repository(redis_client=redis_client)
    )
    logger.info(f"Service container initialised (draft storage: {config.DRAFT_STORAGE_BACKEND})")
    return container


_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """获取服务容器(测试中可通过 dependency_overrides 替换)"""
    global _container
    if _container is None:
        _container = build_container()
    return _container


def parse_granularity(value: str) -> Granularity:
    try:
        return Granularity(value.lower())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"未知的成绩粒度: {value}")


def period_key(granularity: str, period_id: int, class_id: int) -> PeriodKey:
    return PeriodKey(parse_granularity(granularity), period_id, class_id)


def to_http_exception(error: ResultsServiceError) -> HTTPException:
    """服务层异常映射为HTTP错误"""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ConfirmationRequiredError):
        return HTTPException(
            status_code=409,
            detail={"message": error.message, "confirmation_required": True, "pending_count": error.pending_count}
        )
    if isinstance(error, (OperationInProgressError, InvalidTransitionError)):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ServerError):
        return HTTPException(status_code=502, detail=error.message)
    return HTTPException(status_code=500, detail=str(error))
