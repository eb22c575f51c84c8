import fnmatch
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from academic_results.database.cache import ResultSetCache
from academic_results.database.draft_repository import InMemoryDraftRepository
from academic_results.services.notifications import NotificationChannel
from academic_results.schemas.result_schemas import StudentResult


class FakeRedis:
    """字典实现的Redis替身, 只支持缓存层用到的命令"""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    def set(self, key: str, value: str) -> bool:
        self.store[key] = value
        return True

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                deleted += 1
        return deleted

    def keys(self, pattern: str) -> List[str]:
        return [key for key in self.store if fnmatch.fnmatchcase(key, pattern)]

    def ping(self) -> bool:
        return True


def make_result(student_id: int, average: float, name: Optional[str] = None, rank: Optional[int] = None) -> StudentResult:
    return StudentResult(
        student_id=student_id,
        student_name=name or f"Student {student_id}",
        average=average,
        rank=rank
    )


def make_student(student_id: int, first_name: str, last_name: str, status: Optional[str] = None,
                 remarks: Optional[str] = None, matricule: Optional[str] = None) -> Dict[str, Any]:
    student = {
        "id": student_id,
        "first_name": first_name,
        "last_name": last_name,
        "matricule": matricule or f"MAT{student_id:03d}",
        "promotion_decision": None,
    }
    if status:
        student["promotion_decision"] = {
            "id": 1000 + student_id,
            "student_id": student_id,
            "status": status,
            "is_manual": True,
            "remarks": remarks,
        }
    return student


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def result_cache(fake_redis):
    return ResultSetCache(fake_redis)


@pytest.fixture
def notifier():
    return NotificationChannel()


@pytest.fixture
def draft_repository():
    return InMemoryDraftRepository()


@pytest.fixture
def mock_backend_client():
    """学校后端客户端替身"""
    return MagicMock()
