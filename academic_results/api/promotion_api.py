from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional

from ..database.draft_repository import DraftStorageError
from ..database.enums import PromotionStatus, EDITABLE_PROMOTION_STATUSES
from ..schemas.promotion_schemas import PromotionSessionState, PromotionDraftEntry
from ..schemas.request_schemas import (
    OpenSessionRequest, EntryUpdateRequest, BulkUpdateRequest, ConfirmationRequest
)
from ..schemas.response_schemas import SubmissionResponse, DiffResponse
from ..services.exceptions import ResultsServiceError
from ..services.promotion_draft_store import PromotionDraftStore
from .dependencies import ServiceContainer, get_container, to_http_exception

router = APIRouter()


def _open_session(container: ServiceContainer, class_id: int, year_id: int) -> PromotionDraftStore:
    store = container.promotions.get(class_id, year_id)
    if store is None or not store.is_open:
        raise HTTPException(status_code=404, detail=f"班级 {class_id} 学年 {year_id} 的晋级会话未打开")
    return store


@router.post("/{class_id}/{year_id}/session", response_model=PromotionSessionState)
async def open_session(
    class_id: int,
    year_id: int,
    request: Optional[OpenSessionRequest] = None,
    container: ServiceContainer = Depends(get_container)
):
    """打开晋级草稿会话"""
    store = container.promotions.get_or_create(class_id, year_id)
    try:
        return await store.open(force_refetch=request.force_refetch if request else False)
    except ResultsServiceError as e:
        raise to_http_exception(e)
    except DraftStorageError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{class_id}/{year_id}/session", response_model=PromotionSessionState)
async def get_session(
    class_id: int,
    year_id: int,
    filter_text: Optional[str] = None,
    container: ServiceContainer = Depends(get_container)
):
    """获取会话状态, 可按姓名或学号筛选条目"""
    store = _open_session(container, class_id, year_id)
    state = store.state()
    if filter_text:
        state.entries = store.filtered_entries(filter_text)
    return state


@router.delete("/{class_id}/{year_id}/session")
async def close_session(
    class_id: int,
    year_id: int,
    container: ServiceContainer = Depends(get_container)
):
    """关闭会话, 已保存的草稿保留"""
    container.promotions.remove(class_id, year_id)
    return {"message": "晋级会话已关闭"}


@router.patch("/{class_id}/{year_id}/entries/{student_id}", response_model=PromotionDraftEntry)
async def update_entry(
    class_id: int,
    year_id: int,
    student_id: int,
    request: EntryUpdateRequest,
    container: ServiceContainer = Depends(get_container)
):
    """修改单个学生的状态或备注"""
    store = _open_session(container, class_id, year_id)
    try:
        entry = None
        if request.status is not None:
            entry = store.update_status(student_id, request.status)
        if request.remarks is not None:
            entry = store.update_remarks(student_id, request.remarks)
        return entry
    except ResultsServiceError as e:
        raise to_http_exception(e)
    except DraftStorageError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{class_id}/{year_id}/bulk")
async def bulk_update(
    class_id: int,
    year_id: int,
    request: BulkUpdateRequest,
    container: ServiceContainer = Depends(get_container)
):
    """批量设置筛选结果的状态"""
    store = _open_session(container, class_id, year_id)
    try:
        updated = store.bulk_update_status(request.status, request.filter_text)
        return {"updated_count": updated, "status": request.status.value}
    except ResultsServiceError as e:
        raise to_http_exception(e)
    except DraftStorageError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{class_id}/{year_id}/refresh", response_model=PromotionSessionState)
async def refresh_session(
    class_id: int,
    year_id: int,
    request: Optional[ConfirmationRequest] = None,
    container: ServiceContainer = Depends(get_container)
):
    """放弃草稿并从后端重新加载"""
    store = container.promotions.get_or_create(class_id, year_id)
    try:
        return await store.refresh(confirmed=request.confirmed if request else False)
    except ResultsServiceError as e:
        raise to_http_exception(e)
    except DraftStorageError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{class_id}/{year_id}/submit", response_model=SubmissionResponse)
async def submit_decisions(
    class_id: int,
    year_id: int,
    request: Optional[ConfirmationRequest] = None,
    container: ServiceContainer = Depends(get_container)
):
    """提交非待定状态的晋级决定"""
    store = _open_session(container, class_id, year_id)
    submitted_count = len(store.entries) - store.pending_count
    try:
        response = await store.submit(confirmed=request.confirmed if request else False)
    except ResultsServiceError as e:
        raise to_http_exception(e)
    except DraftStorageError as e:
        raise HTTPException(status_code=500, detail=str(e))

    container.promotions.remove(class_id, year_id)
    return SubmissionResponse(
        message="晋级决定提交成功",
        submitted_count=submitted_count,
        backend_response=response
    )


@router.get("/{class_id}/{year_id}/diff", response_model=DiffResponse)
async def get_diff(
    class_id: int,
    year_id: int,
    container: ServiceContainer = Depends(get_container)
):
    """草稿与后端基线的差异"""
    store = _open_session(container, class_id, year_id)
    return DiffResponse(class_id=class_id, academic_year_id=year_id, changes=store.diff())


@router.get("/statuses")
async def list_statuses():
    """可设置的晋级状态"""
    return {"statuses": [status.value for status in PromotionStatus if status in EDITABLE_PROMOTION_STATUSES]}


@router.get("/enrollments/statistics")
async def get_enrollment_statistics(
    academic_year_id: int = Query(..., description="学年ID", gt=0),
    container: ServiceContainer = Depends(get_container)
):
    """学年注册统计, 提交晋级决定后缓存失效"""
    try:
        return await container.cache.get_enrollment_statistics(
            academic_year_id,
            lambda: container.client.fetch_enrollment_statistics(academic_year_id)
        )
    except ResultsServiceError as e:
        raise to_http_exception(e)
