"""
솔루션 상태 전이 규칙 테스트 (DB 불필요).
"""

from decimal import Decimal

import pytest

from openaero.exceptions import BusinessRuleError, ForbiddenError, ValidationError
from openaero.models import Solution, SolutionStatus
from openaero.services.solution_status_workflow import (
    STATUS_TRANSITIONS,
    get_available_transitions,
    validate_solution_completeness,
    validate_transition,
)

S = SolutionStatus


def _solution(title="六轴植保无人机", description="适用于大田喷洒作业的六轴植保无人机整体方案", price=Decimal("10")):
    return Solution(title=title, description=description, price=price)


@pytest.mark.unit
class TestCompleteness:

    def test_complete_solution_passes(self):
        assert validate_solution_completeness(_solution()) is True

    def test_description_length_boundary(self):
        assert validate_solution_completeness(_solution(description="植" * 20)) is True
        with pytest.raises(ValidationError):
            validate_solution_completeness(_solution(description="植" * 19))

    def test_collects_all_errors(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_solution_completeness(_solution(title="短", description="太短", price=Decimal("-1")))
        errors = excinfo.value.context["errors"]
        assert len(errors) == 3
        assert "方案标题不能少于5个字符" in errors


@pytest.mark.unit
class TestValidateTransition:

    def test_rule_table_has_no_duplicates(self):
        pairs = [(t.from_status, t.to_status) for t in STATUS_TRANSITIONS]
        assert len(pairs) == len(set(pairs))

    @pytest.mark.parametrize("from_status,to_status", [
        (S.DRAFT.value, S.PUBLISHED.value),
        (S.DRAFT.value, S.APPROVED.value),
        (S.PUBLISHED.value, S.DRAFT.value),
        (S.ARCHIVED.value, S.PUBLISHED.value),
    ])
    def test_unknown_transition(self, from_status, to_status):
        with pytest.raises(BusinessRuleError):
            validate_transition(from_status, to_status, roles=["ADMIN"])

    def test_review_transition_requires_reviewer_role(self):
        with pytest.raises(ForbiddenError):
            validate_transition(S.PENDING_REVIEW.value, S.APPROVED.value, roles=["USER", "CREATOR"])
        assert validate_transition(S.PENDING_REVIEW.value, S.APPROVED.value, roles=["REVIEWER"])
        assert validate_transition(S.PENDING_REVIEW.value, S.REJECTED.value, roles=["SUPER_ADMIN"])

    def test_system_transition_skips_role_check(self):
        assert validate_transition(S.PENDING_REVIEW.value, S.APPROVED.value, roles=None)

    def test_revoke_approval_admin_only(self):
        with pytest.raises(ForbiddenError):
            validate_transition(S.APPROVED.value, S.REJECTED.value, roles=["REVIEWER"])
        assert validate_transition(S.APPROVED.value, S.REJECTED.value, roles=["ADMIN"])

    def test_submit_checks_completeness(self):
        with pytest.raises(ValidationError):
            validate_transition(S.DRAFT.value, S.PENDING_REVIEW.value, roles=["CREATOR"], solution=_solution(title="x"))
        assert validate_transition(S.DRAFT.value, S.PENDING_REVIEW.value, roles=["CREATOR"], solution=_solution())

    def test_available_transitions_by_role(self):
        creator = {(t.to_status) for t in get_available_transitions(S.PENDING_REVIEW.value, ["CREATOR"])}
        admin = {(t.to_status) for t in get_available_transitions(S.PENDING_REVIEW.value, ["ADMIN"])}
        assert creator == set()
        assert admin == {S.APPROVED.value, S.REJECTED.value}

        draft = {t.to_status for t in get_available_transitions(S.DRAFT.value, ["CREATOR"])}
        assert draft == {S.PENDING_REVIEW.value, S.ARCHIVED.value}
