import asyncio
import pytest
from unittest.mock import MagicMock, AsyncMock

from academic_results.database.enums import Granularity, PublicationScope
from academic_results.services.exceptions import (
    ValidationError, ServerError, PublicationError, OperationInProgressError
)
from academic_results.services.granularity import PeriodKey, YearResultsAdapter, TermResultsAdapter
from academic_results.services.notifications import NotificationChannel
from academic_results.services.publication_controller import PublicationController
from academic_results.services.selection import filter_results, select_all_ids

from conftest import make_result


class TestPublicationController:
    """测试发布控制器"""

    def setup_method(self):
        self.client = MagicMock()
        self.client.post = AsyncMock(return_value={"updated": 2})
        self.adapters = {
            Granularity.TERM: TermResultsAdapter(self.client),
            Granularity.YEAR: YearResultsAdapter(self.client),
        }
        self.cache = MagicMock()
        self.cache.refresh = AsyncMock()
        self.notifier = NotificationChannel()
        self.controller = PublicationController(self.adapters, self.cache, self.notifier)
        self.key = PeriodKey(Granularity.YEAR, 2024, 12)

    @pytest.mark.asyncio
    async def test_selected_students_without_targets_warns(self):
        """未选择学生时只发出警告, 不请求后端"""
        outcome = await self.controller.publish(self.key, PublicationScope.SELECTED_STUDENTS, True, [])

        assert outcome.performed is False
        self.client.post.assert_not_awaited()
        self.cache.refresh.assert_not_awaited()
        notifications = self.notifier.drain()
        assert notifications[0]["level"] == "warning"

    @pytest.mark.asyncio
    async def test_subject_for_selected_requires_subject(self):
        with pytest.raises(ValidationError):
            await self.controller.publish(self.key, PublicationScope.SUBJECT_FOR_SELECTED, True, [1, 2])

        self.client.post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_all_students_refreshes_before_success(self):
        """刷新完成后才发出成功通知"""
        order = []

        async def refresh(*args, **kwargs):
            order.append("refresh")
            assert self.notifier.peek() == []

        self.cache.refresh.side_effect = refresh

        outcome = await self.controller.publish(self.key, PublicationScope.ALL_STUDENTS, True)

        assert outcome.performed is True
        assert order == ["refresh"]
        assert self.client.post.call_args.args[0] == "results/yearly-results/2024/publish/"
        notifications = self.notifier.drain()
        assert notifications[-1]["level"] == "success"

    @pytest.mark.asyncio
    async def test_publish_selected_students(self):
        outcome = await self.controller.publish(
            self.key, PublicationScope.SELECTED_STUDENTS, False, target_ids=[5, 6, 7]
        )

        assert outcome.target_count == 3
        assert self.client.post.call_args.kwargs["payload"] == {"publish": False, "student_ids": [5, 6, 7]}

    @pytest.mark.asyncio
    async def test_backend_failure_raises_publication_error(self):
        self.client.post.side_effect = ServerError("Publish year all_students: Results not calculated", status_code=400)

        with pytest.raises(PublicationError) as exc_info:
            await self.controller.publish(self.key, PublicationScope.ALL_STUDENTS, True)

        assert exc_info.value.status_code == 400
        self.cache.refresh.assert_not_awaited()
        notifications = self.notifier.drain()
        assert notifications[0]["level"] == "error"
        assert notifications[0]["message"] == "Publish year all_students: Results not calculated"
        assert self.controller.is_in_flight(self.key, PublicationScope.ALL_STUDENTS) is False

    @pytest.mark.asyncio
    async def test_same_scope_guarded_other_scope_allowed(self):
        """同一范围并发被拒绝, 不同范围互不阻塞"""
        release = asyncio.Event()

        async def slow_post(*args, **kwargs):
            await release.wait()
            return {"ok": True}

        self.client.post.side_effect = slow_post
        first = asyncio.create_task(self.controller.publish(self.key, PublicationScope.ALL_STUDENTS, True))
        await asyncio.sleep(0)

        with pytest.raises(OperationInProgressError):
            await self.controller.publish(self.key, PublicationScope.ALL_STUDENTS, True)

        second = asyncio.create_task(self.controller.publish(self.key, PublicationScope.ALL_SUBJECTS, True))
        await asyncio.sleep(0)
        assert self.controller.is_in_flight(self.key, PublicationScope.ALL_SUBJECTS) is True

        release.set()
        outcomes = await asyncio.gather(first, second)
        assert all(outcome.performed for outcome in outcomes)


class TestSelection:
    """测试筛选与全选"""

    def setup_method(self):
        self.results = [
            make_result(1, 15.0, name="Alice Martin"),
            make_result(2, 11.0, name="Bob Stone"),
            make_result(3, 9.0, name="alicia Keys"),
        ]

    def test_filter_case_insensitive(self):
        assert [r.student_id for r in filter_results(self.results, "ALIC")] == [1, 3]

    def test_filter_empty_query_returns_all(self):
        assert len(filter_results(self.results, "  ")) == 3

    def test_select_all_uses_filtered_view(self):
        assert select_all_ids(self.results, "bob") == [2]
        assert select_all_ids(self.results) == [1, 2, 3]
        assert select_all_ids([], "x") == []
