# 通知通道
import logging
from collections import deque
from datetime import datetime
from typing import List, Optional, Dict, Any

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"
WARNING = "warning"
INFO = "info"

_LOG_LEVELS = {
    SUCCESS: logging.INFO,
    INFO: logging.INFO,
    WARNING: logging.WARNING,
    ERROR: logging.ERROR,
}


class NotificationChannel:
    """操作结果通知通道

    保留最近的通知供接口层读取, 同时写入日志。
    """

    def __init__(self, max_size: int = 100):
        self._notifications: deque = deque(maxlen=max_size)

    def success(self, message: str, description: Optional[str] = None, scope: Optional[str] = None) -> None:
        self._push(SUCCESS, message, description, scope)

    def error(self, message: str, description: Optional[str] = None, scope: Optional[str] = None) -> None:
        self._push(ERROR, message, description, scope)

    def warning(self, message: str, description: Optional[str] = None, scope: Optional[str] = None) -> None:
        self._push(WARNING, message, description, scope)

    def info(self, message: str, description: Optional[str] = None, scope: Optional[str] = None) -> None:
        self._push(INFO, message, description, scope)

    def drain(self) -> List[Dict[str, Any]]:
        """取出并清空所有通知"""
        notifications = list(self._notifications)
        self._notifications.clear()
        return notifications

    def peek(self) -> List[Dict[str, Any]]:
        return list(self._notifications)

    def _push(self, level: str, message: str, description: Optional[str], scope: Optional[str]) -> None:
        self._notifications.append({
            "level": level,
            "message": message,
            "description": description,
            "scope": scope,
            "created_at": datetime.now().isoformat()
        })
        logger.log(_LOG_LEVELS[level], f"[{level}] {scope or 'general'}: {message}" + (f" ({description})" if description else ""))
