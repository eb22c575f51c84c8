import pytest
import redis
from unittest.mock import MagicMock, AsyncMock

from academic_results.database.cache import ResultSetCache, CacheError, create_redis_client
from academic_results.database.enums import Granularity
from academic_results.schemas.result_schemas import ResultPage
from academic_results.services.exceptions import ServerError
from academic_results.services.granularity import PeriodKey

from conftest import make_result


def make_adapter(supports_subject_check: bool = False):
    adapter = MagicMock()
    adapter.supports_subject_check = supports_subject_check
    adapter.fetch_page = AsyncMock(return_value=ResultPage(count=1, results=[make_result(1, 12.0)], total_pages=1))
    adapter.fetch_all = AsyncMock(return_value=ResultPage(
        count=2,
        results=[make_result(1, 12.0), make_result(2, 8.0)],
        class_statistics={"total_students": 2},
        total_pages=1
    ))
    adapter.has_subject_results = AsyncMock(return_value=True)
    return adapter


class TestResultSetCache:
    """测试成绩结果缓存"""

    def setup_method(self):
        self.key = PeriodKey(Granularity.YEAR, 2024, 12)

    def test_key_format(self, result_cache):
        assert result_cache.full_key(self.key) == "results_cache:year:2024:12:all"
        assert result_cache.page_key(self.key, 2, 50, "average", "desc") == \
            "results_cache:year:2024:12:page:2:50:average:desc"
        assert result_cache.subjects_check_key(self.key) == "results_cache:year:2024:12:subjects_check"

    def test_long_key_is_hashed(self, result_cache):
        key = result_cache._make_key(["x" * 250])
        assert key.startswith("results_cache:hash:")

    def test_long_period_key_keeps_scope_prefix(self, result_cache):
        cache_key = result_cache.page_key(self.key, 1, 50, "x" * 200, "asc")
        assert cache_key.startswith("results_cache:year:2024:12:hash:")

    @pytest.mark.asyncio
    async def test_invalidate_drops_hashed_page_keys(self, result_cache, fake_redis):
        """超长键被哈希后仍随时段一起失效"""
        adapter = make_adapter()

        await result_cache.get_page(adapter, self.key, 1, 50, "x" * 200, "asc")
        await result_cache.get_all(adapter, self.key)

        deleted = await result_cache.invalidate(self.key)

        assert deleted == 2
        assert fake_redis.store == {}

    @pytest.mark.asyncio
    async def test_get_page_caches_result(self, result_cache, fake_redis):
        """第二次读取命中缓存"""
        adapter = make_adapter()

        first = await result_cache.get_page(adapter, self.key, 1, 50, "rank", "asc")
        second = await result_cache.get_page(adapter, self.key, 1, 50, "rank", "asc")

        assert adapter.fetch_page.await_count == 1
        assert first.results[0].student_id == second.results[0].student_id
        cache_key = result_cache.page_key(self.key, 1, 50, "rank", "asc")
        assert fake_redis.ttls[cache_key] == result_cache.ttl_config["page_view"]

    @pytest.mark.asyncio
    async def test_get_all_caches_full_view(self, result_cache):
        adapter = make_adapter()

        await result_cache.get_all(adapter, self.key)
        page = await result_cache.get_all(adapter, self.key)

        assert adapter.fetch_all.await_count == 1
        assert len(page.results) == 2
        assert page.class_statistics == {"total_students": 2}

    @pytest.mark.asyncio
    async def test_invalidate_drops_every_view(self, result_cache, fake_redis):
        """失效操作同时清除分页视图、全量视图和科目检查"""
        adapter = make_adapter(supports_subject_check=True)
        other_key = PeriodKey(Granularity.YEAR, 2024, 13)

        await result_cache.get_page(adapter, self.key, 1, 50, None, "asc")
        await result_cache.get_page(adapter, self.key, 2, 50, None, "asc")
        await result_cache.get_all(adapter, self.key)
        await result_cache.has_subject_results(adapter, self.key)
        await result_cache.get_all(adapter, other_key)

        deleted = await result_cache.invalidate(self.key)

        assert deleted == 4
        assert list(fake_redis.store.keys()) == [result_cache.full_key(other_key)]

    @pytest.mark.asyncio
    async def test_refresh_refetches_both_views(self, result_cache):
        adapter = make_adapter(supports_subject_check=True)
        await result_cache.get_page(adapter, self.key)
        await result_cache.get_all(adapter, self.key)

        full_page = await result_cache.refresh(adapter, self.key)

        assert adapter.fetch_page.await_count == 2
        assert adapter.fetch_all.await_count == 2
        adapter.has_subject_results.assert_awaited_once()
        assert full_page.count == 2

    @pytest.mark.asyncio
    async def test_refresh_propagates_backend_error(self, result_cache):
        adapter = make_adapter()
        adapter.fetch_all.side_effect = ServerError("Fetch year results: boom", status_code=500)

        with pytest.raises(ServerError):
            await result_cache.refresh(adapter, self.key)

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_backend(self):
        """缓存读写失败时直接从后端获取"""
        broken_redis = MagicMock()
        broken_redis.get.side_effect = redis.ConnectionError("down")
        broken_redis.setex.side_effect = redis.ConnectionError("down")
        cache = ResultSetCache(broken_redis)
        adapter = make_adapter()

        page = await cache.get_all(adapter, self.key)

        assert page.count == 2
        adapter.fetch_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_malformed_cache_entry_refetched(self, result_cache, fake_redis):
        adapter = make_adapter()
        fake_redis.store[result_cache.full_key(self.key)] = '{"results": "broken"}'

        page = await result_cache.get_all(adapter, self.key)

        assert page.count == 2
        adapter.fetch_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_promotion_data_cache_and_force_refetch(self, result_cache):
        fetch = AsyncMock(return_value=[{"id": 1}])

        await result_cache.get_promotion_data(12, 2024, fetch)
        await result_cache.get_promotion_data(12, 2024, fetch)
        assert fetch.await_count == 1

        await result_cache.get_promotion_data(12, 2024, fetch, force_refetch=True)
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_promotion_queries(self, result_cache, fake_redis):
        await result_cache.get_promotion_data(12, 2024, AsyncMock(return_value=[]))
        await result_cache.get_enrollment_statistics(2024, AsyncMock(return_value={"total": 30}))

        deleted = await result_cache.invalidate_promotion_queries(12, 2024)

        assert deleted == 2
        assert fake_redis.store == {}


class TestCreateRedisClient:
    """测试Redis客户端创建"""

    def test_connection_failure_raises_cache_error(self, monkeypatch):
        mock_client = MagicMock()
        mock_client.ping.side_effect = redis.ConnectionError("refused")
        monkeypatch.setattr(redis, "Redis", MagicMock(return_value=mock_client))

        with pytest.raises(CacheError):
            create_redis_client()
