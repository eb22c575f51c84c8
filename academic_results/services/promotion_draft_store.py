# 晋级决定草稿服务
import logging
from typing import Dict, Any, List, Optional, Iterable, Tuple

from pydantic import ValidationError as SchemaValidationError

from .. import config
from ..clients.backend_client import SchoolBackendClient
from ..database.cache import ResultSetCache
from ..database.draft_repository import DraftRepository
from ..database.enums import PromotionStatus, EDITABLE_PROMOTION_STATUSES
from ..schemas.promotion_schemas import (
    PromotionDraftEntry, StudentWithDecision, DecisionSubmission, PromotionSessionState
)
from .exceptions import (
    ValidationError, ServerError, PromotionSubmissionError,
    DataIntegrityError, ConfirmationRequiredError, OperationInProgressError
)
from .notifications import NotificationChannel

logger = logging.getLogger(__name__)


class PromotionDraftStore:
    """学年末晋级决定草稿

    工作集以本地存储中的草稿为准, 没有可用草稿时由后端基线构建。
    打开会话不会写存储, 只有编辑才会持久化整个工作集。
    """

    def __init__(
        self,
        client: SchoolBackendClient,
        repository: DraftRepository,
        cache: ResultSetCache,
        notifier: NotificationChannel,
        class_id: int,
        academic_year_id: int,
        remarks_required_for: Optional[Iterable[str]] = None
    ):
        self.client = client
        self.repository = repository
        self.cache = cache
        self.notifier = notifier
        self.class_id = class_id
        self.academic_year_id = academic_year_id
        if remarks_required_for is None:
            remarks_required_for = config.PROMOTION_REMARKS_REQUIRED_FOR
        self.remarks_required_for = frozenset(str(s).lower() for s in remarks_required_for)

        self.entries: List[PromotionDraftEntry] = []
        self.is_open = False
        self.draft_active = False
        self._loading = False
        self._submitting = False

    @property
    def pending_count(self) -> int:
        return sum(1 for entry in self.entries if entry.promotion_status == PromotionStatus.PENDING)

    @property
    def in_use(self) -> bool:
        """会话打开中或有未完成的后端请求"""
        return self.is_open or self._loading or self._submitting

    async def open(self, force_refetch: bool = False) -> PromotionSessionState:
        """打开会话: 优先采用已保存的草稿"""
        stored = self._load_stored_draft()
        if stored is not None:
            self.entries = stored
            self.draft_active = True
            logger.info(f"Restored promotion draft for class {self.class_id}, year {self.academic_year_id} ({len(stored)} entries)")
        else:
            self._loading = True
            try:
                self.entries = await self._build_from_baseline(force_refetch)
            finally:
                self._loading = False
            self.draft_active = False

        self.is_open = True
        return self.state()

    def update_status(self, student_id: int, status: Any) -> PromotionDraftEntry:
        """修改单个学生的晋级状态"""
        self._ensure_open()
        self._ensure_not_submitting()
        entry = self._find_entry(student_id)
        entry.promotion_status = self._coerce_status(status)
        self._persist()
        return entry

    def update_remarks(self, student_id: int, remarks: Optional[str]) -> PromotionDraftEntry:
        """修改单个学生的备注"""
        self._ensure_open()
        self._ensure_not_submitting()
        entry = self._find_entry(student_id)
        entry.remarks = remarks or ""
        self._persist()
        return entry

    def bulk_update_status(self, status: Any, filter_text: str = "") -> int:
        """批量修改筛选结果中所有学生的状态"""
        self._ensure_open()
        self._ensure_not_submitting()
        new_status = self._coerce_status(status)
        targets = self.filtered_entries(filter_text)
        if not targets:
            return 0

        for entry in targets:
            entry.promotion_status = new_status
        self._persist()
        logger.info(f"Bulk set {len(targets)} promotion decisions to {new_status.value} for class {self.class_id}")
        return len(targets)

    def filtered_entries(self, filter_text: Optional[str] = "") -> List[PromotionDraftEntry]:
        """按姓名或学号筛选(不区分大小写)"""
        needle = (filter_text or "").strip().lower()
        if not needle:
            return list(self.entries)
        return [
            entry for entry in self.entries
            if needle in (entry.full_name or "").lower() or needle in (entry.matricule or "").lower()
        ]

    async def refresh(self, confirmed: bool = False) -> PromotionSessionState:
        """放弃草稿并从后端重新加载"""
        self._ensure_not_submitting()
        # 新建的会话对象 draft_active 为 False, 需以存储中的草稿为准
        if (self.draft_active or self._has_stored_draft()) and not confirmed:
            raise ConfirmationRequiredError(
                "Refreshing will discard your unsaved promotion decisions. Continue?",
                pending_count=self.pending_count
            )

        self.repository.clear(self.class_id, self.academic_year_id)
        self._loading = True
        try:
            self.entries = await self._build_from_baseline(force_refetch=True)
        finally:
            self._loading = False
        self.draft_active = False
        self.is_open = True
        self.notifier.info("Data refreshed from server", scope=self._scope)
        return self.state()

    async def submit(self, confirmed: bool = False) -> Any:
        """提交非待定状态的决定

        同一会话同时只允许一个提交请求, 提交期间拒绝编辑和刷新。
        """
        self._ensure_open()
        self._ensure_not_submitting()
        decisions = [entry for entry in self.entries if entry.promotion_status != PromotionStatus.PENDING]

        if not decisions:
            message = "No decisions to submit. All students are still pending."
            self.notifier.warning(message, scope=self._scope)
            raise ValidationError(message)

        missing_remarks = [
            entry.full_name or str(entry.student_id)
            for entry in decisions
            if entry.promotion_status.value in self.remarks_required_for and not (entry.remarks or "").strip()
        ]
        if missing_remarks:
            raise ValidationError(f"Remarks are required for: {', '.join(missing_remarks)}")

        pending_count = len(self.entries) - len(decisions)
        if pending_count and not confirmed:
            raise ConfirmationRequiredError(
                f"{pending_count} students still have a pending decision and will not be submitted. Continue?",
                pending_count=pending_count
            )

        payload = [
            DecisionSubmission(
                student_id=entry.student_id,
                status=entry.promotion_status,
                remarks=entry.remarks or ""
            ).model_dump(mode="json")
            for entry in decisions
        ]

        self._submitting = True
        try:
            try:
                response = await self.client.submit_promotion_decisions(self.academic_year_id, self.class_id, payload)
            except ServerError as e:
                self.notifier.error(e.message, scope=self._scope)
                raise PromotionSubmissionError(e.message, status_code=e.status_code, payload=e.payload)

            self.repository.clear(self.class_id, self.academic_year_id)
            await self.cache.invalidate_promotion_queries(self.class_id, self.academic_year_id)
            self.close()
        finally:
            self._submitting = False
        logger.info(f"Submitted {len(payload)} promotion decisions for class {self.class_id}, year {self.academic_year_id}")
        self.notifier.success(f"{len(payload)} promotion decisions submitted successfully", scope=self._scope)
        return response

    def close(self) -> None:
        """关闭会话, 已保存的草稿保留"""
        self.entries = []
        self.is_open = False
        self.draft_active = False

    def diff(self) -> List[Dict[str, Any]]:
        """与后端基线不一致的条目"""
        changes = []
        for entry in self.entries:
            baseline = entry.fetched_promotion_decision
            baseline_status = baseline.status if baseline else PromotionStatus.PENDING
            baseline_remarks = (baseline.remarks if baseline else None) or ""
            if entry.promotion_status == baseline_status and (entry.remarks or "") == baseline_remarks:
                continue
            changes.append({
                "student_id": entry.student_id,
                "full_name": entry.full_name,
                "matricule": entry.matricule,
                "before": {"status": baseline_status.value, "remarks": baseline_remarks},
                "after": {"status": entry.promotion_status.value, "remarks": entry.remarks or ""},
            })
        return changes

    def state(self) -> PromotionSessionState:
        return PromotionSessionState(
            class_id=self.class_id,
            academic_year_id=self.academic_year_id,
            is_open=self.is_open,
            draft_active=self.draft_active,
            entries=list(self.entries),
            pending_count=self.pending_count
        )

    # 私有辅助方法
    @property
    def _scope(self) -> str:
        return f"promotion:{self.class_id}:{self.academic_year_id}"

    def _ensure_open(self) -> None:
        if not self.is_open:
            raise ValidationError("Promotion session is not open")

    def _ensure_not_submitting(self) -> None:
        if self._submitting:
            raise OperationInProgressError(
                f"Promotion decisions for class {self.class_id} are being submitted"
            )

    def _find_entry(self, student_id: int) -> PromotionDraftEntry:
        for entry in self.entries:
            if entry.student_id == student_id:
                return entry
        raise ValidationError(f"Student {student_id} is not enrolled in class {self.class_id}")

    def _coerce_status(self, status: Any) -> PromotionStatus:
        try:
            new_status = PromotionStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown promotion status: {status}")
        if new_status not in EDITABLE_PROMOTION_STATUSES:
            raise ValidationError(f"Promotion status {new_status.value} cannot be set manually")
        return new_status

    def _persist(self) -> None:
        self.draft_active = True
        self.repository.set(
            self.class_id,
            self.academic_year_id,
            [entry.model_dump(mode="json") for entry in self.entries]
        )

    def _has_stored_draft(self) -> bool:
        try:
            raw = self.repository.get(self.class_id, self.academic_year_id)
        except DataIntegrityError:
            return False
        return isinstance(raw, list)

    def _load_stored_draft(self) -> Optional[List[PromotionDraftEntry]]:
        """读取已保存草稿, 结构不合法时清除并返回None"""
        try:
            raw = self.repository.get(self.class_id, self.academic_year_id)
        except DataIntegrityError as e:
            logger.warning(f"Discarding unreadable promotion draft: {str(e)}")
            self.repository.clear(self.class_id, self.academic_year_id)
            return None

        if raw is None:
            return None

        if not isinstance(raw, list):
            logger.warning(f"Discarding promotion draft for class {self.class_id}: expected a list, got {type(raw).__name__}")
            self.repository.clear(self.class_id, self.academic_year_id)
            return None

        try:
            return [PromotionDraftEntry.model_validate(item) for item in raw]
        except SchemaValidationError as e:
            logger.warning(f"Discarding malformed promotion draft for class {self.class_id}: {str(e)}")
            self.repository.clear(self.class_id, self.academic_year_id)
            return None

    async def _build_from_baseline(self, force_refetch: bool) -> List[PromotionDraftEntry]:
        """由后端学生及晋级决定构建工作集, 按姓名排序"""
        try:
            data = await self.cache.get_promotion_data(
                self.class_id,
                self.academic_year_id,
                fetch=lambda: self.client.fetch_class_students_promotion_data(self.class_id, self.academic_year_id),
                force_refetch=force_refetch
            )
        except ServerError as e:
            self.notifier.error(e.message, scope=self._scope)
            raise

        students: List[StudentWithDecision] = []
        for item in data or []:
            try:
                students.append(StudentWithDecision.model_validate(item))
            except SchemaValidationError as e:
                logger.warning(f"Skipping malformed student record in promotion data: {str(e)}")

        students.sort(key=lambda student: student.full_name.lower())

        entries = []
        for student in students:
            decision = student.promotion_decision
            entries.append(PromotionDraftEntry(
                student_id=student.id,
                full_name=student.full_name,
                matricule=student.matricule,
                promotion_status=decision.status if decision else PromotionStatus.PENDING,
                remarks=(decision.remarks if decision else None) or "",
                fetched_promotion_decision=decision
            ))
        return entries


class PromotionDraftRegistry:
    """按 (班级, 学年) 管理草稿会话"""

    def __init__(
        self,
        client: SchoolBackendClient,
        repository: DraftRepository,
        cache: ResultSetCache,
        notifier: NotificationChannel,
        remarks_required_for: Optional[Iterable[str]] = None
    ):
        self.client = client
        self.repository = repository
        self.cache = cache
        self.notifier = notifier
        self.remarks_required_for = remarks_required_for
        self._sessions: Dict[Tuple[int, int], PromotionDraftStore] = {}

    def get_or_create(self, class_id: int, academic_year_id: int) -> PromotionDraftStore:
        key = (class_id, academic_year_id)
        if key not in self._sessions:
            self._evict_idle()
            self._sessions[key] = PromotionDraftStore(
                self.client,
                self.repository,
                self.cache,
                self.notifier,
                class_id,
                academic_year_id,
                remarks_required_for=self.remarks_required_for
            )
        return self._sessions[key]

    def get(self, class_id: int, academic_year_id: int) -> Optional[PromotionDraftStore]:
        return self._sessions.get((class_id, academic_year_id))

    def remove(self, class_id: int, academic_year_id: int) -> None:
        store = self._sessions.pop((class_id, academic_year_id), None)
        if store:
            store.close()

    def _evict_idle(self) -> None:
        """移除已关闭且没有进行中请求的会话, 草稿仍保留在存储中"""
        idle = [key for key, store in self._sessions.items() if not store.in_use]
        for key in idle:
            del self._sessions[key]
        if idle:
            logger.debug(f"Evicted {len(idle)} idle promotion sessions")
