from fastapi import APIRouter, Depends, Query
from typing import List

from ..schemas.response_schemas import NotificationResponse
from .dependencies import ServiceContainer, get_container

router = APIRouter()


@router.get("", response_model=List[NotificationResponse])
async def get_notifications(
    drain: bool = Query(True, description="读取后是否清空"),
    container: ServiceContainer = Depends(get_container)
):
    """获取操作通知"""
    if drain:
        return container.notifier.drain()
    return container.notifier.peek()
