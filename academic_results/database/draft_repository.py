# 晋级决定草稿存储
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Callable

import redis
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from .models import PromotionDraftRecord
from ..services.exceptions import DataIntegrityError

logger = logging.getLogger(__name__)


class DraftStorageError(Exception):
    """草稿存储异常"""
    pass


def draft_storage_key(class_id: Any, academic_year_id: Any) -> str:
    """草稿存储键"""
    return f"promotionDecisions_{class_id}_{academic_year_id}"


def _decode(key: str, raw: Optional[str]) -> Optional[Any]:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise DataIntegrityError(f"草稿 {key} 不是有效的JSON: {str(e)}")


class DraftRepository(ABC):
    """草稿仓库接口, 按 (班级, 学年) 组合键存取JSON值, 无过期时间"""

    def get(self, class_id: Any, academic_year_id: Any) -> Optional[Any]:
        """读取草稿, 不存在返回None, 无法解码抛出DataIntegrityError"""
        key = draft_storage_key(class_id, academic_year_id)
        return _decode(key, self._read(key))

    def set(self, class_id: Any, academic_year_id: Any, value: Any) -> None:
        """写入草稿"""
        key = draft_storage_key(class_id, academic_year_id)
        self._write(key, json.dumps(value, ensure_ascii=False, default=str))

    def clear(self, class_id: Any, academic_year_id: Any) -> None:
        """删除草稿"""
        self._remove(draft_storage_key(class_id, academic_year_id))

    @abstractmethod
    def _read(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def _write(self, key: str, raw: str) -> None:
        pass

    @abstractmethod
    def _remove(self, key: str) -> None:
        pass


class InMemoryDraftRepository(DraftRepository):
    """内存草稿仓库"""

    def __init__(self):
        self.storage: Dict[str, str] = {}

    def _read(self, key: str) -> Optional[str]:
        return self.storage.get(key)

    def _write(self, key: str, raw: str) -> None:
        self.storage[key] = raw

    def _remove(self, key: str) -> None:
        self.storage.pop(key, None)


class RedisDraftRepository(DraftRepository):
    """Redis草稿仓库(永久键)"""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def _read(self, key: str) -> Optional[str]:
        try:
            return self.redis.get(key)
        except redis.RedisError as e:
            logger.error(f"Error reading draft {key} from Redis: {str(e)}")
            raise DraftStorageError(f"读取草稿失败: {str(e)}")

    def _write(self, key: str, raw: str) -> None:
        try:
            self.redis.set(key, raw)
        except redis.RedisError as e:
            logger.error(f"Error writing draft {key} to Redis: {str(e)}")
            raise DraftStorageError(f"保存草稿失败: {str(e)}")

    def _remove(self, key: str) -> None:
        try:
            self.redis.delete(key)
        except redis.RedisError as e:
            logger.error(f"Error deleting draft {key} from Redis: {str(e)}")
            raise DraftStorageError(f"删除草稿失败: {str(e)}")


class SqlDraftRepository(DraftRepository):
    """数据库草稿仓库"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _read(self, key: str) -> Optional[str]:
        db = self.session_factory()
        try:
            record = db.get(PromotionDraftRecord, key)
            return record.payload if record else None
        except SQLAlchemyError as e:
            self._handle_db_error(db, e, "read")
        finally:
            db.close()

    def _write(self, key: str, raw: str) -> None:
        db = self.session_factory()
        try:
            record = db.get(PromotionDraftRecord, key)
            if record:
                record.payload = raw
            else:
                db.add(PromotionDraftRecord(storage_key=key, payload=raw))
            db.commit()
        except SQLAlchemyError as e:
            self._handle_db_error(db, e, "write")
        finally:
            db.close()

    def _remove(self, key: str) -> None:
        db = self.session_factory()
        try:
            db.query(PromotionDraftRecord).filter(PromotionDraftRecord.storage_key == key).delete()
            db.commit()
        except SQLAlchemyError as e:
            self._handle_db_error(db, e, "remove")
        finally:
            db.close()

    def _handle_db_error(self, db: Session, error: Exception, operation: str) -> None:
        """统一处理数据库异常"""
        logger.error(f"Database error in draft {operation}: {str(error)}")
        db.rollback()
        raise DraftStorageError(f"草稿数据库操作失败: {str(error)}")
