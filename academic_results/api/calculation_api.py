from fastapi import APIRouter, Query, Depends

from ..schemas.request_schemas import CalculationRequest
from ..schemas.response_schemas import CalculationJobResponse
from ..services.exceptions import ResultsServiceError
from .dependencies import ServiceContainer, get_container, period_key, to_http_exception

router = APIRouter()


@router.post("/{granularity}/{period_id}", response_model=CalculationJobResponse)
async def start_calculation(
    granularity: str,
    period_id: int,
    request: CalculationRequest,
    container: ServiceContainer = Depends(get_container)
):
    """执行计算, 所有步骤和结果刷新完成后返回"""
    key = period_key(granularity, period_id, request.class_id)
    try:
        job = await container.orchestrator.run(key, request.page_params())
        return job.to_dict()
    except ResultsServiceError as e:
        raise to_http_exception(e)


@router.post("/{granularity}/{period_id}/retry", response_model=CalculationJobResponse)
async def retry_calculation(
    granularity: str,
    period_id: int,
    request: CalculationRequest,
    container: ServiceContainer = Depends(get_container)
):
    """失败后重试计算"""
    key = period_key(granularity, period_id, request.class_id)
    try:
        job = await container.orchestrator.retry(key, request.page_params())
        return job.to_dict()
    except ResultsServiceError as e:
        raise to_http_exception(e)


@router.get("/{granularity}/{period_id}", response_model=CalculationJobResponse)
async def get_calculation(
    granularity: str,
    period_id: int,
    class_id: int = Query(..., description="班级ID", gt=0),
    container: ServiceContainer = Depends(get_container)
):
    """获取计算进度"""
    key = period_key(granularity, period_id, class_id)
    return container.orchestrator.describe(key)


@router.delete("/{granularity}/{period_id}")
async def dismiss_calculation(
    granularity: str,
    period_id: int,
    class_id: int = Query(..., description="班级ID", gt=0),
    container: ServiceContainer = Depends(get_container)
):
    """关闭计算进度"""
    key = period_key(granularity, period_id, class_id)
    try:
        container.orchestrator.dismiss(key)
        return {"message": "计算进度已关闭"}
    except ResultsServiceError as e:
        raise to_http_exception(e)
