# 服务配置
import os
import logging
from typing import FrozenSet

# 日志配置
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# 学校后端API配置
SCHOOL_API_URL = os.getenv("SCHOOL_API_URL", "http://127.0.0.1:8001/api")
SCHOOL_API_TOKEN = os.getenv("SCHOOL_API_TOKEN")
SCHOOL_API_TIMEOUT = float(os.getenv("SCHOOL_API_TIMEOUT", "30"))

# Redis缓存配置
REDIS_HOST = os.getenv("REDIS_HOST", "127.0.0.1")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_DB = int(os.getenv("REDIS_DB", 0))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")

# 草稿存储配置: sql | redis | memory
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./academic_results.db")
DRAFT_STORAGE_BACKEND = os.getenv("DRAFT_STORAGE_BACKEND", "sql").lower()

# 结果分页配置
RESULTS_PAGE_SIZE = int(os.getenv("RESULTS_PAGE_SIZE", 50))
FULL_RESULTS_PAGE_SIZE = int(os.getenv("FULL_RESULTS_PAGE_SIZE", 9999))

# 计算完成后进度保留时间(秒)
CALCULATION_DISPLAY_DELAY = float(os.getenv("CALCULATION_DISPLAY_DELAY", "1.5"))


def _parse_status_list(raw: str) -> FrozenSet[str]:
    """解析逗号分隔的状态列表"""
    return frozenset(item.strip().lower() for item in raw.split(",") if item.strip())


# 需要填写备注的晋级状态
PROMOTION_REMARKS_REQUIRED_FOR = _parse_status_list(
    os.getenv("PROMOTION_REMARKS_REQUIRED_FOR", "")
)


def configure_logging() -> None:
    """初始化日志"""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
