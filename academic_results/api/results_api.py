from fastapi import APIRouter, HTTPException, Query, Depends
from typing import Optional

from .. import config
from ..schemas.result_schemas import ResultPage, StatisticsOverview
from ..schemas.response_schemas import ResultsResponse
from ..services.exceptions import ResultsServiceError
from ..services.selection import filter_results, select_all_ids
from .dependencies import ServiceContainer, get_container, period_key, to_http_exception

router = APIRouter()


@router.get("/{granularity}/{period_id}", response_model=ResultsResponse)
async def get_results(
    granularity: str,
    period_id: int,
    class_id: int = Query(..., description="班级ID", gt=0),
    page: int = Query(1, description="页码", ge=1),
    page_size: int = Query(config.RESULTS_PAGE_SIZE, description="每页条数", ge=1),
    sort_column: Optional[str] = Query(None, description="排序列"),
    sort_direction: str = Query("asc", description="排序方向", pattern="^(asc|desc)$"),
    search: Optional[str] = Query(None, description="按学生姓名筛选"),
    container: ServiceContainer = Depends(get_container)
):
    """获取分页成绩; 提供筛选文本时在全量视图上筛选"""
    key = period_key(granularity, period_id, class_id)
    adapter = container.adapter(key.granularity)
    try:
        adapter.validate_sort_column(sort_column)
        if search and search.strip():
            full_page = await container.cache.get_all(adapter, key)
            matches = filter_results(full_page.results, search)
            result_page = ResultPage(
                count=len(matches),
                results=matches,
                class_statistics=full_page.class_statistics,
                class_name=full_page.class_name,
                total_pages=1 if matches else 0
            )
            matching_ids = select_all_ids(full_page.results, search)
        else:
            result_page = await container.cache.get_page(
                adapter, key, page, page_size, sort_column, sort_direction
            )
            matching_ids = []

        has_subject_results = None
        if adapter.supports_subject_check:
            has_subject_results = await container.cache.has_subject_results(adapter, key)

        return ResultsResponse(
            granularity=key.granularity.value,
            period_id=period_id,
            class_id=class_id,
            page=result_page,
            search=search,
            matching_student_ids=matching_ids,
            has_subject_results=has_subject_results
        )
    except ResultsServiceError as e:
        raise to_http_exception(e)


@router.get("/{granularity}/{period_id}/statistics", response_model=StatisticsOverview)
async def get_statistics(
    granularity: str,
    period_id: int,
    class_id: int = Query(..., description="班级ID", gt=0),
    container: ServiceContainer = Depends(get_container)
):
    """获取班级统计概览(基于全量视图)"""
    key = period_key(granularity, period_id, class_id)
    adapter = container.adapter(key.granularity)
    try:
        full_page = await container.cache.get_all(adapter, key)
    except ResultsServiceError as e:
        raise to_http_exception(e)

    try:
        return container.aggregator.build_overview(full_page.class_statistics, full_page.results)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"统计计算失败: {str(e)}")
