"""
Tests for evaluation recording and the approval rule it triggers.

Usage:
    cd backend && pytest tests/test_evaluation_service.py -v
"""

import asyncio
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError

from factories import (
    FrozenClock,
    RecordingSink,
    build_services,
    make_assignment,
    make_department,
    make_proposal,
    make_user,
    open_database,
    principal_for,
)
from proposal_review.auth import Principal
from proposal_review.errors import DuplicateEvaluation, Forbidden, InvalidState, NotFound
from proposal_review.models.enums import (
    AssignmentStatus,
    NotificationKind,
    ProposalStatus,
    Recommendation,
    Role,
)
from proposal_review.models.evaluation import EvaluationCreate, EvaluationUpdate
from proposal_review.repository import load_proposal
from proposal_review.services.evaluation_service import EvaluationGate


def _run(scenario):
    async def wrapper():
        clock = FrozenClock()
        async with open_database() as database:
            async with database.session() as db:
                await scenario(db, build_services(db, clock, RecordingSink()), clock)

    asyncio.run(wrapper())


def _someone(role):
    return Principal(user_id=uuid.uuid4(), username="someone", role=role)


async def _under_review(db):
    dept = await make_department(db)
    pi = await make_user(db, Role.PRINCIPAL_INVESTIGATOR)
    chair = await make_user(db, Role.COMMITTEE_CHAIR)
    reviewer = await make_user(db, Role.REVIEWER)
    proposal = await make_proposal(db, pi, dept, ProposalStatus.UNDER_REVIEW)
    assignment = await make_assignment(db, proposal, reviewer, chair)
    return proposal, pi, chair, reviewer, assignment


# ============================================================================
# RECORD
# ============================================================================

class TestRecord:
    def test_approve_evaluation_approves_proposal(self):
        async def scenario(db, services, clock):
            proposal, pi, _, reviewer, assignment = await _under_review(db)

            evaluation = await services.evaluations.record(
                proposal.id,
                reviewer.id,
                scores={"overall_score": Decimal("8.50"), "budget_score": Decimal("7")},
                recommendation=Recommendation.APPROVE,
            )

            assert evaluation.overall_score == Decimal("8.50")
            assert evaluation.technical_score is None
            assert evaluation.is_final is False
            assert proposal.status is ProposalStatus.APPROVED
            # Recording does not complete the assignment
            assert assignment.status is AssignmentStatus.PENDING

            kinds = [e.kind for e in services.outbox.pending]
            assert NotificationKind.EVALUATION_RECEIVED in kinds
            assert NotificationKind.PROPOSAL_STATUS_CHANGED in kinds

        _run(scenario)

    def test_single_approval_wins_over_earlier_rejections(self):
        async def scenario(db, services, clock):
            proposal, _, chair, reviewer, _ = await _under_review(db)
            critic = await make_user(db, Role.REVIEWER)
            await make_assignment(db, proposal, critic, chair)

            await services.evaluations.record(proposal.id, critic.id, recommendation=Recommendation.REJECT)
            assert proposal.status is ProposalStatus.UNDER_REVIEW

            await services.evaluations.record(proposal.id, reviewer.id, recommendation=Recommendation.APPROVE)
            assert proposal.status is ProposalStatus.APPROVED

        _run(scenario)

    @pytest.mark.parametrize(
        "recommendation",
        [Recommendation.REJECT, Recommendation.MINOR_REVISIONS, Recommendation.MAJOR_REVISIONS, None],
    )
    def test_non_approval_leaves_status(self, recommendation):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            await services.evaluations.record(
                proposal.id, reviewer.id, recommendation=recommendation, is_final=True
            )
            assert proposal.status is ProposalStatus.UNDER_REVIEW

        _run(scenario)

    def test_duplicate_pair_rejected(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            await services.evaluations.record(proposal.id, reviewer.id)
            with pytest.raises(DuplicateEvaluation):
                await services.evaluations.record(proposal.id, reviewer.id)

        _run(scenario)

    def test_unique_constraint_is_reported_as_duplicate(self):
        """A pair written after the pre-check still fails as DuplicateEvaluation."""

        async def scenario():
            clock = FrozenClock()
            async with open_database() as database:
                async with database.session() as db:
                    proposal, _, _, reviewer, _ = await _under_review(db)
                    services = build_services(db, clock, RecordingSink())
                    existing = await services.evaluations.record(
                        proposal.id, reviewer.id, comments="First"
                    )
                proposal_id, reviewer_id = proposal.id, reviewer.id

                services = None
                with patch(
                    "proposal_review.services.evaluation_service.load_evaluation",
                    AsyncMock(return_value=None),
                ):
                    with pytest.raises(DuplicateEvaluation):
                        async with database.session() as db:
                            services = build_services(db, clock, RecordingSink())
                            await services.evaluations.record(
                                proposal_id,
                                reviewer_id,
                                recommendation=Recommendation.APPROVE,
                                comments="Second",
                            )
                assert services.outbox.pending == ()

                async with database.session() as db:
                    services = build_services(db, clock, RecordingSink())
                    evaluations = await services.evaluations.for_proposal(proposal_id)
                    assert [(e.id, e.comments) for e in evaluations] == [(existing.id, "First")]
                    proposal = await load_proposal(db, proposal_id)
                    assert proposal.status is ProposalStatus.UNDER_REVIEW

        asyncio.run(scenario())

    def test_missing_proposal_or_reviewer(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            with pytest.raises(NotFound):
                await services.evaluations.record(uuid.uuid4(), reviewer.id)
            with pytest.raises(NotFound):
                await services.evaluations.record(proposal.id, uuid.uuid4())

        _run(scenario)

    def test_unknown_score_field(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            with pytest.raises(ValueError):
                await services.evaluations.record(
                    proposal.id, reviewer.id, scores={"charm_score": Decimal("1")}
                )

        _run(scenario)


class TestRecordFrom:
    def test_reviewer_records_as_themselves(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            data = EvaluationCreate(proposal_id=proposal.id, overall_score=Decimal("9"))
            evaluation = await services.evaluations.record_from(principal_for(reviewer), data)
            assert evaluation.reviewer_id == reviewer.id

        _run(scenario)

    def test_reviewer_cannot_record_for_someone_else(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            other = await make_user(db, Role.REVIEWER)
            data = EvaluationCreate(proposal_id=proposal.id, reviewer_id=other.id)
            with pytest.raises(Forbidden):
                await services.evaluations.record_from(principal_for(reviewer), data)

        _run(scenario)

    def test_chair_records_on_behalf(self):
        async def scenario(db, services, clock):
            proposal, _, chair, reviewer, _ = await _under_review(db)
            data = EvaluationCreate(proposal_id=proposal.id, reviewer_id=reviewer.id)
            evaluation = await services.evaluations.record_from(principal_for(chair), data)
            assert evaluation.reviewer_id == reviewer.id

        _run(scenario)


# ============================================================================
# UPDATE / FINALIZE / DELETE
# ============================================================================

class TestLifecycleOfAnEvaluation:
    def test_update_to_approve_approves(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            evaluation = await services.evaluations.record(
                proposal.id, reviewer.id, recommendation=Recommendation.MINOR_REVISIONS
            )
            assert proposal.status is ProposalStatus.UNDER_REVIEW

            updated = await services.evaluations.update(
                evaluation.id,
                principal_for(reviewer),
                EvaluationUpdate(recommendation=Recommendation.APPROVE, comments="Revised"),
            )
            assert updated.comments == "Revised"
            assert proposal.status is ProposalStatus.APPROVED

        _run(scenario)

    def test_other_reviewer_cannot_update(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            other = await make_user(db, Role.REVIEWER)
            evaluation = await services.evaluations.record(proposal.id, reviewer.id)
            with pytest.raises(Forbidden):
                await services.evaluations.update(
                    evaluation.id, principal_for(other), EvaluationUpdate(comments="x")
                )

        _run(scenario)

    def test_finalize_once(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            evaluation = await services.evaluations.record(proposal.id, reviewer.id)

            finalized = await services.evaluations.finalize(evaluation.id, principal_for(reviewer))
            assert finalized.is_final
            with pytest.raises(InvalidState):
                await services.evaluations.finalize(evaluation.id, principal_for(reviewer))

            reopened = await services.evaluations.unfinalize(evaluation.id, principal_for(reviewer))
            assert not reopened.is_final
            # Unfinalizing an open evaluation is allowed
            assert not (await services.evaluations.unfinalize(evaluation.id, principal_for(reviewer))).is_final

        _run(scenario)

    def test_delete_and_lookups(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            evaluation = await services.evaluations.record(proposal.id, reviewer.id)

            assert (await services.evaluations.get_for_pair(proposal.id, reviewer.id)).id == evaluation.id
            assert [e.id for e in await services.evaluations.for_proposal(proposal.id)] == [evaluation.id]
            assert [e.id for e in await services.evaluations.for_reviewer(reviewer.id)] == [evaluation.id]
            assert len(await services.evaluations.list_all()) == 1

            await services.evaluations.delete(evaluation.id)
            with pytest.raises(NotFound):
                await services.evaluations.get(evaluation.id)
            with pytest.raises(NotFound):
                await services.evaluations.get_for_pair(proposal.id, reviewer.id)

        _run(scenario)


# ============================================================================
# QUERIES
# ============================================================================

class TestQueries:
    def test_final_conflict_and_recommendation_filters(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            second = await make_user(db, Role.REVIEWER)
            third = await make_user(db, Role.REVIEWER)
            gate = services.evaluations

            final = await gate.record(
                proposal.id,
                reviewer.id,
                recommendation=Recommendation.REJECT,
                is_final=True,
            )
            clock.advance(minutes=5)
            conflicted = await gate.record(
                proposal.id,
                second.id,
                recommendation=Recommendation.MINOR_REVISIONS,
                conflict_of_interest=True,
            )
            clock.advance(minutes=5)
            pending = await gate.record(
                proposal.id, third.id, recommendation=Recommendation.MINOR_REVISIONS
            )

            assert [e.id for e in await gate.final_evaluations()] == [final.id]
            assert [e.id for e in await gate.final_for_proposal(proposal.id)] == [final.id]
            assert await gate.final_for_proposal(uuid.uuid4()) == []
            assert [e.id for e in await gate.conflict_of_interest()] == [conflicted.id]
            # Newest first
            assert [
                e.id for e in await gate.by_recommendation(Recommendation.MINOR_REVISIONS)
            ] == [pending.id, conflicted.id]
            assert await gate.by_recommendation(Recommendation.APPROVE) == []

        _run(scenario)

    def test_counts(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            second = await make_user(db, Role.REVIEWER)
            gate = services.evaluations

            assert await gate.count_for_proposal(proposal.id) == 0
            await gate.record(proposal.id, reviewer.id, is_final=True)
            await gate.record(proposal.id, second.id)

            assert await gate.count_for_proposal(proposal.id) == 2
            assert await gate.count_for_proposal(proposal.id, final_only=True) == 1
            assert await gate.count_for_proposal(uuid.uuid4()) == 0

        _run(scenario)

    def test_pending_for_reviewer_follows_finalization(self):
        async def scenario(db, services, clock):
            proposal, _, _, reviewer, _ = await _under_review(db)
            gate = services.evaluations
            evaluation = await gate.record(proposal.id, reviewer.id)

            assert [e.id for e in await gate.pending_for_reviewer(reviewer.id)] == [evaluation.id]
            await gate.finalize(evaluation.id, principal_for(reviewer))
            assert await gate.pending_for_reviewer(reviewer.id) == []
            await gate.unfinalize(evaluation.id, principal_for(reviewer))
            assert [e.id for e in await gate.pending_for_reviewer(reviewer.id)] == [evaluation.id]

        _run(scenario)


# ============================================================================
# SCHEMA VALIDATION
# ============================================================================

class TestScoreValidation:
    @pytest.mark.parametrize("value", ["-1", "100.00", "1.234"])
    def test_rejects_out_of_range_scores(self, value):
        with pytest.raises(ValidationError):
            EvaluationCreate(proposal_id=uuid.uuid4(), overall_score=Decimal(value))

    @pytest.mark.parametrize("value", ["0", "10", "99.99", "7.5"])
    def test_accepts_valid_scores(self, value):
        data = EvaluationCreate(proposal_id=uuid.uuid4(), overall_score=Decimal(value))
        assert data.overall_score == Decimal(value)

    def test_update_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            EvaluationUpdate(reviewer_id=uuid.uuid4())

    @pytest.mark.parametrize("field", ["is_final", "conflict_of_interest"])
    def test_update_rejects_null_flags(self, field):
        with pytest.raises(ValidationError, match="may not be null"):
            EvaluationUpdate(**{field: None})

    def test_update_leaves_omitted_flags_unset(self):
        data = EvaluationUpdate(comments="Tightened the budget section")
        assert data.model_dump(exclude_unset=True) == {"comments": "Tightened the budget section"}


class TestReviewerFor:
    def test_defaults_to_caller(self):
        principal = _someone(Role.REVIEWER)
        assert EvaluationGate.reviewer_for(principal, None) == principal.user_id
        assert EvaluationGate.reviewer_for(principal, principal.user_id) == principal.user_id

    def test_admin_may_name_reviewer(self):
        target = uuid.uuid4()
        assert EvaluationGate.reviewer_for(_someone(Role.ADMIN), target) == target
