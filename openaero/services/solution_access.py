"""
솔루션 하위 리소스(BOM, 자산) 접근 규칙
"""
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from openaero.auth import AuthUser
from openaero.exceptions import BusinessRuleError, ForbiddenError, NotFoundError
from openaero.models import Solution, SolutionStatus

EDITABLE_STATUSES = (SolutionStatus.DRAFT.value, SolutionStatus.REJECTED.value)


def get_solution(db: Session, solution_id: uuid.UUID, lock: bool = False) -> Solution:
    solution = db.get(Solution, solution_id, with_for_update=lock)
    if solution is None:
        raise NotFoundError("方案不存在", context={"solution_id": str(solution_id)})
    return solution


def is_owner(solution: Solution, user: Optional[AuthUser]) -> bool:
    return bool(
        user is not None
        and user.has_role("CREATOR")
        and user.creator_profile_id is not None
        and solution.creator_id == user.creator_profile_id
    )


def ensure_can_view(solution: Solution, user: Optional[AuthUser], resource: str) -> None:
    """비로그인/비소유자는 PUBLISHED 솔루션만 조회 가능"""
    if solution.status == SolutionStatus.PUBLISHED.value:
        return
    if user is not None and (user.is_admin or is_owner(solution, user)):
        return
    raise ForbiddenError(f"无权访问此方案的 {resource}")


def ensure_can_edit(solution: Solution, user: AuthUser, resource: str) -> None:
    """CREATOR 소유자 또는 ADMIN/SUPER_ADMIN, 그리고 DRAFT/REJECTED 상태만 편집 가능"""
    if not user.is_admin and not user.has_role("CREATOR"):
        raise ForbiddenError(f"只有创作者可以管理 {resource}")
    if not user.is_admin and not is_owner(solution, user):
        raise ForbiddenError(f"无权修改此方案的 {resource}")
    if solution.status not in EDITABLE_STATUSES:
        raise BusinessRuleError(
            f"只有草稿或已驳回的方案可以编辑 {resource}",
            context={"status": solution.status},
        )


def solution_to_api(solution: Solution) -> dict:
    def iso(value):
        return value.isoformat() if value else None

    return {
        "id": str(solution.id),
        "creatorId": str(solution.creator_id),
        "title": solution.title,
        "description": solution.description,
        "category": solution.category,
        "price": float(solution.price) if solution.price is not None else None,
        "status": solution.status,
        "version": solution.version,
        "reviewNotes": solution.review_notes,
        "submittedAt": iso(solution.submitted_at),
        "reviewedAt": iso(solution.reviewed_at),
        "publishedAt": iso(solution.published_at),
    }
