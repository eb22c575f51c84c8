from fastapi import APIRouter, Depends

from ..schemas.request_schemas import PublicationRequest
from ..schemas.response_schemas import PublicationResponse
from ..services.exceptions import ResultsServiceError
from .dependencies import ServiceContainer, get_container, period_key, to_http_exception

router = APIRouter()


@router.post("/{granularity}/{period_id}", response_model=PublicationResponse)
async def publish_results(
    granularity: str,
    period_id: int,
    request: PublicationRequest,
    container: ServiceContainer = Depends(get_container)
):
    """发布或取消发布成绩"""
    key = period_key(granularity, period_id, request.class_id)
    try:
        outcome = await container.publication.publish(
            key,
            request.scope,
            request.publish,
            target_ids=request.student_ids,
            subject_id=request.subject_id
        )
        return outcome.to_dict()
    except ResultsServiceError as e:
        raise to_http_exception(e)
