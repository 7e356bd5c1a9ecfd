"""
솔루션 상태 워크플로우

상태 전이 규칙 테이블과 검증, 그리고 크리에이터 측 전이(심사 제출 / 게시)를 담당합니다.
심사 결정(PENDING_REVIEW -> APPROVED / REJECTED)은 solution_review 에서 처리합니다.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from sqlalchemy.orm import Session

from openaero.auth import ADMIN_ROLES, AuthUser
from openaero.exceptions import BusinessRuleError, ForbiddenError, NotFoundError, ValidationError
from openaero.models import Solution, SolutionStatus

logger = logging.getLogger(__name__)

# 규칙에서 쓰는 역할 그룹 -> user_profiles.roles 값
ROLE_GROUPS = {
    "admin": ADMIN_ROLES,
    "reviewer": frozenset({"REVIEWER"}),
    "creator": frozenset({"CREATOR"}),
}

STATUS_TEXT = {
    SolutionStatus.DRAFT.value: "草稿",
    SolutionStatus.PENDING_REVIEW.value: "待审核",
    SolutionStatus.APPROVED.value: "已通过",
    SolutionStatus.REJECTED.value: "已拒绝",
    SolutionStatus.PUBLISHED.value: "已发布",
    SolutionStatus.ARCHIVED.value: "已归档",
}


def validate_solution_completeness(solution: Solution) -> bool:
    """
    심사 제출 전 기본 정보 검증

    Raises:
        ValidationError: 누락 항목 목록을 context["errors"] 에 담아 던짐
    """
    errors: List[str] = []
    if not solution.title or len(solution.title) < 5:
        errors.append("方案标题不能少于5个字符")
    if not solution.description or len(solution.description) < 20:
        errors.append("方案描述不能少于20个字符")
    if solution.price is None or Decimal(solution.price) < 0:
        errors.append("请设置有效的方案价格")

    if errors:
        raise ValidationError(f"方案信息不完整：{'，'.join(errors)}", context={"errors": errors})
    return True


@dataclass(frozen=True)
class StatusTransition:
    from_status: str
    to_status: str
    description: str
    required_roles: Optional[tuple] = None
    condition: Optional[Callable[[Solution], bool]] = None


STATUS_TRANSITIONS: tuple = (
    StatusTransition(SolutionStatus.DRAFT.value, SolutionStatus.PENDING_REVIEW.value, "提交审核",
                     condition=validate_solution_completeness),
    StatusTransition(SolutionStatus.DRAFT.value, SolutionStatus.ARCHIVED.value, "归档草稿"),
    StatusTransition(SolutionStatus.PENDING_REVIEW.value, SolutionStatus.APPROVED.value, "审核通过",
                     required_roles=("admin", "reviewer")),
    StatusTransition(SolutionStatus.PENDING_REVIEW.value, SolutionStatus.REJECTED.value, "审核拒绝",
                     required_roles=("admin", "reviewer")),
    StatusTransition(SolutionStatus.APPROVED.value, SolutionStatus.PUBLISHED.value, "发布方案"),
    StatusTransition(SolutionStatus.APPROVED.value, SolutionStatus.REJECTED.value, "撤销通过",
                     required_roles=("admin",)),
    StatusTransition(SolutionStatus.REJECTED.value, SolutionStatus.DRAFT.value, "重新编辑"),
    StatusTransition(SolutionStatus.REJECTED.value, SolutionStatus.ARCHIVED.value, "归档拒绝的方案"),
    StatusTransition(SolutionStatus.PUBLISHED.value, SolutionStatus.ARCHIVED.value, "下架方案",
                     required_roles=("admin", "creator")),
    StatusTransition(SolutionStatus.ARCHIVED.value, SolutionStatus.DRAFT.value, "恢复编辑"),
)


def _roles_allowed(required: Optional[Iterable[str]], roles: Optional[Iterable[str]]) -> bool:
    if not required or roles is None:
        return True
    granted = set(roles)
    return any(granted & ROLE_GROUPS[group] for group in required)


def find_transition(from_status: str, to_status: str) -> Optional[StatusTransition]:
    for t in STATUS_TRANSITIONS:
        if t.from_status == from_status and t.to_status == to_status:
            return t
    return None


def validate_transition(
    from_status: str,
    to_status: str,
    roles: Optional[Iterable[str]] = None,
    solution: Optional[Solution] = None,
) -> StatusTransition:
    """
    전이 가능 여부 검증. roles 가 None 이면 역할 검사를 건너뜀 (시스템 전이)

    Raises:
        BusinessRuleError: 규칙에 없는 전이
        ForbiddenError: 역할 부족
        ValidationError: 전이 조건(완성도) 불충족
    """
    transition = find_transition(from_status, to_status)
    if transition is None:
        raise BusinessRuleError(
            f"不允许从 {STATUS_TEXT.get(from_status, from_status)} 转换到 {STATUS_TEXT.get(to_status, to_status)}",
            context={"from": from_status, "to": to_status},
        )

    if not _roles_allowed(transition.required_roles, roles):
        raise ForbiddenError(
            f"权限不足，需要以下角色之一：{', '.join(transition.required_roles)}",
            context={"from": from_status, "to": to_status},
        )

    if transition.condition is not None and solution is not None:
        transition.condition(solution)

    return transition


def get_available_transitions(current_status: str, roles: Optional[Iterable[str]] = None) -> List[StatusTransition]:
    return [
        t for t in STATUS_TRANSITIONS
        if t.from_status == current_status and _roles_allowed(t.required_roles, roles)
    ]


class SolutionWorkflowService:
    def __init__(self, db: Session):
        self.db = db

    def _get_owned_solution(self, solution_id: uuid.UUID, user: AuthUser) -> Solution:
        solution = self.db.get(Solution, solution_id, with_for_update=True)
        if solution is None:
            raise NotFoundError("方案不存在", context={"solution_id": str(solution_id)})
        if not user.is_admin and solution.creator_id != user.creator_profile_id:
            raise ForbiddenError("无权修改此方案")
        return solution

    def _apply(self, solution: Solution, to_status: str, user: AuthUser) -> None:
        from_status = solution.status
        validate_transition(from_status, to_status, user.roles, solution)
        solution.status = to_status
        logger.info(f"솔루션 상태 변경: {solution.id} {from_status} -> {to_status} (user={user.id})")

    def submit_for_review(self, solution_id: uuid.UUID, user: AuthUser) -> Solution:
        """DRAFT (또는 REJECTED -> DRAFT) 에서 PENDING_REVIEW 로 제출"""
        solution = self._get_owned_solution(solution_id, user)

        if solution.status == SolutionStatus.REJECTED.value:
            self._apply(solution, SolutionStatus.DRAFT.value, user)
        self._apply(solution, SolutionStatus.PENDING_REVIEW.value, user)

        solution.submitted_at = datetime.now(timezone.utc)
        self.db.flush()
        return solution

    def publish_solution(self, solution_id: uuid.UUID, user: AuthUser) -> Solution:
        """APPROVED -> PUBLISHED, 게시 시각 기록 및 버전 증가"""
        solution = self._get_owned_solution(solution_id, user)
        self._apply(solution, SolutionStatus.PUBLISHED.value, user)

        solution.published_at = datetime.now(timezone.utc)
        solution.version = (solution.version or 0) + 1
        self.db.flush()
        return solution

    def archive_solution(self, solution_id: uuid.UUID, user: AuthUser) -> Solution:
        solution = self._get_owned_solution(solution_id, user)
        self._apply(solution, SolutionStatus.ARCHIVED.value, user)
        self.db.flush()
        return solution
