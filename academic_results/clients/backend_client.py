# 学校后端API客户端
import asyncio
import logging
from typing import Optional, Dict, Any, List

import requests

from .. import config
from ..services.exceptions import ServerError

logger = logging.getLogger(__name__)


class SchoolBackendClient:
    """学校后端HTTP网关

    所有请求在工作线程中执行, 调用方以协程方式等待结果。
    """

    def __init__(
        self,
        base_url: str = config.SCHOOL_API_URL,
        token: Optional[str] = config.SCHOOL_API_TOKEN,
        timeout: float = config.SCHOOL_API_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, context: str = "Request") -> Any:
        return await self._request("GET", path, params=params, context=context)

    async def post(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        context: str = "Request"
    ) -> Any:
        return await self._request("POST", path, params=params, payload=payload, context=context)

    # 晋级相关接口
    async def fetch_class_students_promotion_data(self, class_id: int, academic_year_id: int) -> List[Dict[str, Any]]:
        """获取班级学生及其晋级决定"""
        if not class_id or not academic_year_id:
            logger.warning("fetch_class_students_promotion_data called without class or academic year")
            return []

        data = await self.get(
            f"promotions/{class_id}/promotion-data/",
            params={"academic_year_id": academic_year_id},
            context="Fetch Student Promotion Data"
        )
        return data if isinstance(data, list) else []

    async def submit_promotion_decisions(
        self,
        academic_year_id: int,
        class_id: int,
        decisions: List[Dict[str, Any]]
    ) -> Any:
        """批量提交人工晋级决定"""
        if not academic_year_id or not class_id or not decisions:
            raise ValueError("Academic year ID, class ID and a non-empty decisions list are required.")

        payload = {
            "academic_year_id": academic_year_id,
            "class_id": class_id,
            "decisions": [
                {
                    "student_id": d["student_id"],
                    "status": d.get("status") or d.get("promotion_status"),
                    "remarks": d.get("remarks") or "",
                }
                for d in decisions
            ],
        }
        return await self.post(
            "promotions/manual-promotion-decisions/",
            payload=payload,
            context="Submit Manual Decisions"
        )

    async def fetch_enrollment_statistics(self, academic_year_id: Optional[int] = None) -> Any:
        """获取注册统计"""
        params = {"academic_year_id": academic_year_id} if academic_year_id else None
        return await self.get("promotions/enrollments/statistics/", params=params, context="Fetch Statistics")

    # 私有辅助方法
    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        context: str = "Request"
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug(f"{context}: {method} {url} params={params}")

        try:
            response = await asyncio.to_thread(
                self.session.request,
                method,
                url,
                params=params,
                json=payload,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"{context} failed to reach backend: {str(e)}")
            raise ServerError(f"{context}: {str(e)}")

        return self._handle_response(response, context)

    def _handle_response(self, response: requests.Response, context: str) -> Any:
        """统一处理后端响应"""
        data = None
        try:
            data = response.json()
        except ValueError:
            if response.status_code != 204 and response.content:
                logger.warning(f"Could not parse JSON response for {context} (Status: {response.status_code})")
                raise ServerError(
                    f"{context} failed: Invalid response from server (Status: {response.status_code})",
                    status_code=response.status_code
                )

        if not response.ok and response.status_code != 207:
            if isinstance(data, dict):
                error_message = data.get("detail") or data.get("error") or str(data)
            elif data:
                error_message = str(data)
            else:
                error_message = f"Request failed with status {response.status_code}"

            logger.error(f"{context} Error ({response.status_code}): {error_message}")
            raise ServerError(
                f"{context}: {error_message}",
                status_code=response.status_code,
                payload=data if isinstance(data, dict) else None
            )

        if response.status_code == 207:
            logger.warning(f"{context} completed with partial results: {data}")
            return data

        if response.status_code == 204:
            return None

        return data
