"""
크리에이터 측 상태 전이(제출/게시/보관) 통합 테스트.
"""

import uuid

import pytest

from openaero.auth import AuthUser
from openaero.exceptions import BusinessRuleError, ForbiddenError, NotFoundError, ValidationError
from openaero.models import SolutionStatus
from openaero.services.solution_status_workflow import SolutionWorkflowService


@pytest.fixture
def workflow(db_session):
    return SolutionWorkflowService(db_session)


@pytest.mark.integration
class TestSubmitForReview:

    def test_draft_to_pending_review(self, workflow, make_solution, creator_user):
        solution = make_solution()
        result = workflow.submit_for_review(solution.id, creator_user)

        assert result.status == SolutionStatus.PENDING_REVIEW.value
        assert result.submitted_at is not None

    def test_rejected_goes_through_draft(self, workflow, make_solution, creator_user):
        solution = make_solution(status=SolutionStatus.REJECTED.value)
        result = workflow.submit_for_review(solution.id, creator_user)
        assert result.status == SolutionStatus.PENDING_REVIEW.value

    def test_incomplete_solution_rejected(self, workflow, make_solution, creator_user):
        solution = make_solution(title="无人机", description="太短")
        with pytest.raises(ValidationError) as excinfo:
            workflow.submit_for_review(solution.id, creator_user)
        assert len(excinfo.value.context["errors"]) == 2
        assert solution.status == SolutionStatus.DRAFT.value

    def test_published_cannot_be_submitted(self, workflow, make_solution, creator_user):
        solution = make_solution(status=SolutionStatus.PUBLISHED.value)
        with pytest.raises(BusinessRuleError):
            workflow.submit_for_review(solution.id, creator_user)

    def test_other_creator_forbidden(self, workflow, make_solution, make_creator):
        solution = make_solution()
        other = make_creator("别人")
        stranger = AuthUser(id=other.user_id, roles=["USER", "CREATOR"], creator_profile_id=other.id)
        with pytest.raises(ForbiddenError):
            workflow.submit_for_review(solution.id, stranger)

    def test_missing_solution(self, workflow, creator_user):
        with pytest.raises(NotFoundError):
            workflow.submit_for_review(uuid.uuid4(), creator_user)


@pytest.mark.integration
class TestPublishAndArchive:

    def test_publish_approved(self, workflow, make_solution, creator_user):
        solution = make_solution(status=SolutionStatus.APPROVED.value)
        result = workflow.publish_solution(solution.id, creator_user)

        assert result.status == SolutionStatus.PUBLISHED.value
        assert result.published_at is not None
        assert result.version == 2

    def test_publish_requires_approval(self, workflow, make_solution, creator_user):
        solution = make_solution(status=SolutionStatus.PENDING_REVIEW.value)
        with pytest.raises(BusinessRuleError):
            workflow.publish_solution(solution.id, creator_user)

    def test_admin_can_archive_published(self, workflow, make_solution, admin_user):
        solution = make_solution(status=SolutionStatus.PUBLISHED.value)
        assert workflow.archive_solution(solution.id, admin_user).status == SolutionStatus.ARCHIVED.value

    def test_creator_archives_draft(self, workflow, make_solution, creator_user):
        solution = make_solution()
        assert workflow.archive_solution(solution.id, creator_user).status == SolutionStatus.ARCHIVED.value
