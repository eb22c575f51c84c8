# Redis缓存层实现
import redis
import json
import hashlib
import logging
from typing import Optional, Any, Dict, List, Union, Callable, Awaitable, TYPE_CHECKING

from .. import config
from ..schemas.result_schemas import ResultPage

if TYPE_CHECKING:
    from ..services.granularity import GranularityAdapter, PeriodKey

logger = logging.getLogger(__name__)

# (粒度, 时段, 班级)
PERIOD_SCOPE_SIZE = 3


class CacheError(Exception):
    """缓存相关异常"""
    pass


class ResultSetCache:
    """成绩结果缓存管理器

    每个 (粒度, 时段, 班级) 维护两个视图: 分页排序视图用于展示,
    全量视图用于统计、导出和前后三名; 两者必须同时失效。
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client
        self.prefix = "results_cache:"
        self.ttl_config = {
            "page_view": 600,                 # 分页视图缓存10分钟
            "full_view": 600,                 # 全量视图缓存10分钟
            "subjects_check": 600,            # 科目成绩存在检查
            "promotion_data": 300,            # 晋级基线数据缓存5分钟
            "enrollment_statistics": 300      # 注册统计缓存5分钟
        }

    def _make_key(self, key_components: List[str], scope_size: int = 0) -> str:
        """生成缓存键

        键过长时只对前 scope_size 个组成部分之后的内容取哈希,
        保留的作用域前缀使按时段的模式失效仍能匹配。
        """
        key_string = ":".join(str(c) for c in key_components)
        if len(key_string) > 200:
            scope = [str(c) for c in key_components[:scope_size]]
            rest = ":".join(str(c) for c in key_components[scope_size:])
            key_hash = hashlib.md5(rest.encode()).hexdigest()
            return f"{self.prefix}" + ":".join(scope + ["hash", key_hash])
        return f"{self.prefix}{key_string}"

    def page_key(
        self,
        key: "PeriodKey",
        page: int,
        page_size: int,
        sort_column: Optional[str],
        sort_direction: Optional[str]
    ) -> str:
        return self._make_key(key.components() + [
            "page", str(page), str(page_size), sort_column or "default", sort_direction or "asc"
        ], scope_size=PERIOD_SCOPE_SIZE)

    def full_key(self, key: "PeriodKey") -> str:
        return self._make_key(key.components() + ["all"], scope_size=PERIOD_SCOPE_SIZE)

    def subjects_check_key(self, key: "PeriodKey") -> str:
        return self._make_key(key.components() + ["subjects_check"], scope_size=PERIOD_SCOPE_SIZE)

    async def get_page(
        self,
        adapter: "GranularityAdapter",
        key: "PeriodKey",
        page: int = 1,
        page_size: int = config.RESULTS_PAGE_SIZE,
        sort_column: Optional[str] = None,
        sort_direction: Optional[str] = "asc"
    ) -> ResultPage:
        """获取分页展示视图"""
        cache_key = self.page_key(key, page, page_size, sort_column, sort_direction)
        return await self._get_or_fetch_page(
            cache_key,
            lambda: adapter.fetch_page(key.period_id, key.class_id, page, page_size, sort_column, sort_direction),
            self.ttl_config["page_view"]
        )

    async def get_all(self, adapter: "GranularityAdapter", key: "PeriodKey") -> ResultPage:
        """获取全量视图(按排名)"""
        return await self._get_or_fetch_page(
            self.full_key(key),
            lambda: adapter.fetch_all(key.period_id, key.class_id),
            self.ttl_config["full_view"]
        )

    async def has_subject_results(self, adapter: "GranularityAdapter", key: "PeriodKey") -> bool:
        """获取科目成绩存在检查结果"""
        if not adapter.supports_subject_check:
            return False

        cache_key = self.subjects_check_key(key)
        cached = await self._read_json(cache_key)
        if cached is not None:
            return bool(cached)

        exists = await adapter.has_subject_results(key.period_id, key.class_id)
        await self._write_json(cache_key, exists, self.ttl_config["subjects_check"])
        return exists

    async def invalidate(self, key: "PeriodKey") -> int:
        """同时清除某时段班级的所有视图"""
        try:
            pattern = self._make_key(key.components() + ["*"])
            keys = await self._scan_keys(pattern)
            if keys:
                deleted_count = await self._delete_keys(keys)
                logger.info(f"Invalidated {deleted_count} cache entries for {key}")
                return deleted_count
            return 0
        except Exception as e:
            logger.error(f"Error invalidating result cache for {key}: {str(e)}")
            return 0

    async def refresh(
        self,
        adapter: "GranularityAdapter",
        key: "PeriodKey",
        page: int = 1,
        page_size: int = config.RESULTS_PAGE_SIZE,
        sort_column: Optional[str] = None,
        sort_direction: Optional[str] = "asc"
    ) -> ResultPage:
        """失效并重新加载分页视图、全量视图和科目检查

        后端错误向上抛出, 调用方负责处理。
        """
        await self.invalidate(key)
        await self.get_page(adapter, key, page, page_size, sort_column, sort_direction)
        full_page = await self.get_all(adapter, key)
        if adapter.supports_subject_check:
            await self.has_subject_results(adapter, key)
        logger.info(f"Refreshed result views for {key}")
        return full_page

    # 晋级数据缓存
    def promotion_data_key(self, class_id: int, academic_year_id: int) -> str:
        return self._make_key(["promotion_data", str(class_id), str(academic_year_id)])

    def enrollment_statistics_key(self, academic_year_id: int) -> str:
        return self._make_key(["enrollment_statistics", str(academic_year_id)])

    async def get_promotion_data(
        self,
        class_id: int,
        academic_year_id: int,
        fetch: Callable[[], Awaitable[List[Dict[str, Any]]]],
        force_refetch: bool = False
    ) -> List[Dict[str, Any]]:
        """获取晋级基线数据"""
        cache_key = self.promotion_data_key(class_id, academic_year_id)
        if not force_refetch:
            cached = await self._read_json(cache_key)
            if isinstance(cached, list):
                logger.debug(f"Cache hit for promotion data: {class_id}/{academic_year_id}")
                return cached

        data = await fetch()
        await self._write_json(cache_key, data, self.ttl_config["promotion_data"])
        return data

    async def get_enrollment_statistics(
        self,
        academic_year_id: int,
        fetch: Callable[[], Awaitable[Any]]
    ) -> Any:
        """获取注册统计"""
        cache_key = self.enrollment_statistics_key(academic_year_id)
        cached = await self._read_json(cache_key)
        if cached is not None:
            return cached

        data = await fetch()
        await self._write_json(cache_key, data, self.ttl_config["enrollment_statistics"])
        return data

    async def invalidate_promotion_queries(self, class_id: int, academic_year_id: int) -> int:
        """提交晋级决定后清除基线和注册统计缓存"""
        try:
            keys = [
                self.promotion_data_key(class_id, academic_year_id),
                self.enrollment_statistics_key(academic_year_id),
            ]
            deleted = await self._delete_keys(keys)
            logger.info(f"Invalidated promotion queries for class {class_id}, year {academic_year_id}")
            return deleted
        except Exception as e:
            logger.error(f"Error invalidating promotion queries: {str(e)}")
            return 0

    # 私有辅助方法
    async def _get_or_fetch_page(
        self,
        cache_key: str,
        fetch: Callable[[], Awaitable[ResultPage]],
        ttl: int
    ) -> ResultPage:
        cached = await self._read_json(cache_key)
        if cached is not None:
            try:
                return ResultPage.model_validate(cached)
            except Exception as e:
                logger.warning(f"Discarding malformed cache entry {cache_key}: {str(e)}")

        result_page = await fetch()
        await self._write_json(cache_key, result_page.model_dump(mode="json"), ttl)
        return result_page

    async def _read_json(self, key: str) -> Optional[Any]:
        try:
            cached_data = await self._get_cached_data(key)
            if cached_data is None:
                logger.debug(f"Cache miss: {key}")
                return None
            logger.debug(f"Cache hit: {key}")
            return json.loads(cached_data)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}, falling back to backend: {str(e)}")
            return None

    async def _write_json(self, key: str, data: Any, ttl: int) -> bool:
        try:
            return bool(await self._set_cached_data(key, json.dumps(data, ensure_ascii=False, default=str), ttl))
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {str(e)}")
            return False

    async def _get_cached_data(self, key: str) -> Optional[Union[str, bytes]]:
        """获取缓存数据"""
        return self.redis.get(key)

    async def _set_cached_data(self, key: str, data: Union[str, bytes], ttl: int) -> bool:
        """设置缓存数据"""
        return self.redis.setex(key, ttl, data)

    async def _delete_keys(self, keys: List[str]) -> int:
        """删除多个缓存键"""
        if keys:
            return self.redis.delete(*keys)
        return 0

    async def _scan_keys(self, pattern: str) -> List[str]:
        """扫描匹配模式的键"""
        return self.redis.keys(pattern)


def create_redis_client() -> redis.Redis:
    """创建Redis客户端"""
    redis_config = {
        "host": config.REDIS_HOST,
        "port": config.REDIS_PORT,
        "db": config.REDIS_DB,
        "password": config.REDIS_PASSWORD,
        "decode_responses": True,
        "max_connections": 50,
        "socket_timeout": 30,
        "socket_connect_timeout": 30,
        "retry_on_timeout": True
    }

    # 移除空密码
    if redis_config["password"] is None:
        del redis_config["password"]

    try:
        client = redis.Redis(**redis_config)
        client.ping()
        logger.info("Redis client connected successfully")
        return client
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {str(e)}")
        raise CacheError(f"Redis connection failed: {str(e)}")
