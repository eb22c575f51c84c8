# 成绩发布控制服务
import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Set, Tuple

from ..database.cache import ResultSetCache
from ..database.enums import Granularity, PublicationScope, TARGETED_SCOPES
from .exceptions import ValidationError, ServerError, PublicationError, OperationInProgressError
from .granularity import GranularityAdapter, PeriodKey
from .notifications import NotificationChannel

logger = logging.getLogger(__name__)


@dataclass
class PublicationOutcome:
    """发布操作结果"""
    performed: bool
    scope: PublicationScope
    value: bool
    target_count: int = 0
    response: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "performed": self.performed,
            "scope": self.scope.value,
            "publish": self.value,
            "target_count": self.target_count,
        }


class PublicationController:
    """成绩发布控制器

    支持四种发布范围。不做乐观更新: 后端确认并刷新结果视图后才通知成功。
    同一 (时段, 范围) 同时只允许一个请求, 不同范围之间互不阻塞。
    """

    def __init__(
        self,
        adapters: Dict[Granularity, GranularityAdapter],
        cache: ResultSetCache,
        notifier: NotificationChannel
    ):
        self.adapters = adapters
        self.cache = cache
        self.notifier = notifier
        self._in_flight: Set[Tuple[PeriodKey, PublicationScope]] = set()

    async def publish(
        self,
        key: PeriodKey,
        scope: PublicationScope,
        value: bool,
        target_ids: Optional[List[int]] = None,
        subject_id: Optional[int] = None
    ) -> PublicationOutcome:
        """发布或取消发布"""
        scope = PublicationScope(scope)
        adapter = self._get_adapter(key)
        target_ids = list(target_ids or [])
        action = "publish" if value else "unpublish"

        if scope in TARGETED_SCOPES and not target_ids:
            self.notifier.warning(f"Please select students to {action}", scope=f"publication:{key}")
            return PublicationOutcome(performed=False, scope=scope, value=value)

        if scope == PublicationScope.SUBJECT_FOR_SELECTED and not subject_id:
            raise ValidationError("A subject is required to publish subject results for selected students")

        guard = (key, scope)
        if guard in self._in_flight:
            raise OperationInProgressError(f"Publication {scope.value} already in progress for {key}")

        self._in_flight.add(guard)
        try:
            try:
                response = await adapter.publish(
                    scope,
                    key.period_id,
                    key.class_id,
                    value,
                    student_ids=target_ids or None,
                    subject_id=subject_id
                )
                await self.cache.refresh(adapter, key)
            except ServerError as e:
                self.notifier.error(e.message, scope=f"publication:{key}")
                raise PublicationError(e.message, status_code=e.status_code, payload=e.payload)
        finally:
            self._in_flight.discard(guard)

        logger.info(f"{action.capitalize()}ed {scope.value} for {key} ({len(target_ids)} selected)")
        self.notifier.success(self._success_message(scope, value, len(target_ids)), scope=f"publication:{key}")
        return PublicationOutcome(
            performed=True,
            scope=scope,
            value=value,
            target_count=len(target_ids),
            response=response
        )

    def is_in_flight(self, key: PeriodKey, scope: PublicationScope) -> bool:
        return (key, PublicationScope(scope)) in self._in_flight

    def _get_adapter(self, key: PeriodKey) -> GranularityAdapter:
        if key.granularity not in self.adapters:
            raise ValueError(f"未找到粒度适配器: {key.granularity}")
        return self.adapters[key.granularity]

    def _success_message(self, scope: PublicationScope, value: bool, target_count: int) -> str:
        state = "published" if value else "unpublished"
        if scope == PublicationScope.ALL_SUBJECTS:
            return f"Subject results {state} successfully"
        if scope == PublicationScope.ALL_STUDENTS:
            return f"Results {state} successfully"
        if scope == PublicationScope.SELECTED_STUDENTS:
            return f"Results {state} for {target_count} selected students"
        return f"Subject results {state} for {target_count} selected students"
