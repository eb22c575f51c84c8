# 成绩列表筛选与选择
from typing import List, Optional

from ..schemas.result_schemas import StudentResult


def filter_results(results: Optional[List[StudentResult]], query: Optional[str] = None) -> List[StudentResult]:
    """按学生姓名筛选(不区分大小写)"""
    results = results or []
    needle = (query or "").strip().lower()
    if not needle:
        return list(results)
    return [result for result in results if needle in (result.student_name or "").lower()]


def select_all_ids(results: Optional[List[StudentResult]], query: Optional[str] = None) -> List[int]:
    """全选: 返回筛选后所有学生的ID, 保持原有顺序并去重"""
    selected: List[int] = []
    seen = set()
    for result in filter_results(results, query):
        if result.student_id not in seen:
            seen.add(result.student_id)
            selected.append(result.student_id)
    return selected
