"""
End-to-end tests for the HTTP API.

Drives the full application (access gate, routers, services, in-memory
SQLite) through ``httpx.AsyncClient`` over ``ASGITransport``.

Usage:
    cd backend && pytest tests/test_api.py -v
"""

import asyncio
from types import SimpleNamespace

import httpx

from factories import (
    DEFAULT_PASSWORD,
    FailingSink,
    FrozenClock,
    make_assignment,
    make_department,
    make_proposal,
    make_settings,
    make_user,
)
from proposal_review.auth import TokenKind
from proposal_review.database import Database
from proposal_review.main import create_app
from proposal_review.models.enums import ProposalStatus, Role


# ============================================================================
# TEST HARNESS
# ============================================================================

def _run(scenario, **app_kwargs):
    """Run ``scenario(client, world)`` against a freshly seeded application."""

    async def wrapper():
        settings = make_settings()
        database = Database.from_settings(settings)
        await database.create_schema()
        clock = FrozenClock()
        async with database.session() as db:
            dept = await make_department(db, "Earth Sciences")
            world = SimpleNamespace(
                clock=clock,
                database=database,
                dept=dept,
                admin=await make_user(db, Role.ADMIN, username="admin"),
                chair=await make_user(db, Role.COMMITTEE_CHAIR, username="chair"),
                head=await make_user(db, Role.DEPARTMENT_HEAD, username="head"),
                reviewer=await make_user(db, Role.REVIEWER, username="rev"),
                other_reviewer=await make_user(db, Role.REVIEWER, username="rev2"),
                finance=await make_user(db, Role.FINANCIAL_OFFICER, username="finance"),
                pi=await make_user(db, Role.PRINCIPAL_INVESTIGATOR, username="pi",
                                   department_id=dept.id),
            )
        app = create_app(settings, database=database, clock=clock, **app_kwargs)
        transport = httpx.ASGITransport(app=app)
        try:
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
                world.app = app
                await scenario(client, world)
        finally:
            await database.dispose()

    asyncio.run(wrapper())


async def _login(client, username, password=DEFAULT_PASSWORD):
    response = await client.post(
        "/api/auth/login", json={"username_or_email": username, "password": password}
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _auth(world, user, kind=TokenKind.ACCESS):
    token = world.app.state.token_codec.issue(user.id, user.username, user.role, kind)
    return {"Authorization": f"Bearer {token}"}


async def _new_proposal(client, world, headers, title="Glacier melt sensors"):
    response = await client.post(
        "/api/proposals",
        json={
            "title": title,
            "abstract": "Low-cost sensor network",
            "department_id": str(world.dept.id),
            "project_type": "RESEARCH",
            "requested_amount": "50000.00",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


# ============================================================================
# FULL REVIEW FLOW
# ============================================================================

class TestReviewFlow:
    def test_submit_assign_evaluate_approve(self):
        async def scenario(client, world):
            pi = await _login(client, "pi")
            chair = await _login(client, "chair")
            reviewer = await _login(client, "rev")

            proposal = await _new_proposal(client, world, pi)
            assert proposal["status"] == "DRAFT"
            assert proposal["requested_amount"] == 50000.0
            pid = proposal["id"]

            # Reviewers cannot be assigned before submission
            response = await client.post(
                "/api/proposal-reviewers/assign",
                json={"proposal_id": pid, "reviewer_ids": [str(world.reviewer.id)]},
                headers=chair,
            )
            assert response.status_code == 409
            assert response.json()["code"] == "INVALID_STATE"
            assert response.json()["current_state"] == "DRAFT"

            world.clock.advance(minutes=5)
            response = await client.put(f"/api/proposals/{pid}/submit", headers=pi)
            assert response.status_code == 200
            assert response.json()["status"] == "SUBMITTED"
            assert response.json()["submission_date"] is not None

            world.clock.advance(minutes=5)
            response = await client.post(
                "/api/proposal-reviewers/assign",
                json={
                    "proposal_id": pid,
                    "reviewer_ids": [str(world.reviewer.id)],
                    "due_date": "2026-11-01T00:00:00Z",
                },
                headers=chair,
            )
            assert response.status_code == 201, response.text
            assignments = response.json()
            assert len(assignments) == 1
            assert assignments[0]["status"] == "PENDING"

            response = await client.post(
                "/api/proposal-reviewers/assign",
                json={"proposal_id": pid, "reviewer_ids": [str(world.reviewer.id)]},
                headers=chair,
            )
            assert response.status_code == 409
            assert response.json()["code"] == "DUPLICATE_ASSIGNMENT"

            response = await client.get(f"/api/proposals/{pid}", headers=reviewer)
            assert response.status_code == 200
            assert response.json()["status"] == "UNDER_REVIEW"

            response = await client.get(f"/api/proposal-reviewers/check-assignment/{pid}", headers=reviewer)
            assert response.json() == {"proposal_id": pid, "is_assigned": True}

            world.clock.advance(minutes=5)
            response = await client.post(
                "/api/evaluations",
                json={"proposal_id": pid, "overall_score": 9, "recommendation": "APPROVE"},
                headers=reviewer,
            )
            assert response.status_code == 201, response.text
            assert response.json()["reviewer_id"] == str(world.reviewer.id)
            assert response.json()["overall_score"] == 9.0

            response = await client.get(f"/api/proposals/{pid}", headers=pi)
            assert response.json()["status"] == "APPROVED"

            # The assignment is not completed by the evaluation
            response = await client.get("/api/proposal-reviewers/my-assignments", headers=reviewer)
            assert [a["status"] for a in response.json()] == ["PENDING"]

            response = await client.get(f"/api/proposals/{pid}/history", headers=pi)
            assert [h["new_status"] for h in response.json()] == [
                "DRAFT",
                "SUBMITTED",
                "UNDER_REVIEW",
                "APPROVED",
            ]

            response = await client.get("/api/notifications", headers=reviewer)
            assert [n["kind"] for n in response.json()] == ["EVALUATION_ASSIGNED"]
            response = await client.get("/api/notifications", headers=pi)
            kinds = {n["kind"] for n in response.json()}
            assert {"PROPOSAL_SUBMITTED", "PROPOSAL_STATUS_CHANGED", "EVALUATION_RECEIVED"} <= kinds

        _run(scenario)

    def test_duplicate_evaluation_conflicts(self):
        async def scenario(client, world):
            async with world.database.session() as db:
                proposal = await make_proposal(db, world.pi, world.dept, ProposalStatus.UNDER_REVIEW)
            body = {"proposal_id": str(proposal.id), "recommendation": "MINOR_REVISIONS"}
            headers = _auth(world, world.reviewer)

            assert (await client.post("/api/evaluations", json=body, headers=headers)).status_code == 201
            response = await client.post("/api/evaluations", json=body, headers=headers)
            assert response.status_code == 409
            assert response.json()["code"] == "DUPLICATE_EVALUATION"

        _run(scenario)

    def test_notification_failure_does_not_fail_request(self):
        async def scenario(client, world):
            pi = _auth(world, world.pi)
            proposal = await _new_proposal(client, world, pi)
            response = await client.put(f"/api/proposals/{proposal['id']}/submit", headers=pi)
            assert response.status_code == 200
            assert response.json()["status"] == "SUBMITTED"

        _run(scenario, notification_sink=FailingSink())


# ============================================================================
# EVALUATION QUERIES
# ============================================================================

class TestEvaluationQueries:
    def test_filters_counts_and_reviewer_scope(self):
        async def scenario(client, world):
            async with world.database.session() as db:
                proposal = await make_proposal(db, world.pi, world.dept, ProposalStatus.UNDER_REVIEW)
                await make_assignment(db, proposal, world.reviewer, world.chair)
            pid = proposal.id
            reviewer = _auth(world, world.reviewer)
            other = _auth(world, world.other_reviewer)
            chair = _auth(world, world.chair)

            response = await client.post(
                "/api/evaluations",
                json={"proposal_id": str(pid), "recommendation": "REJECT", "is_final": True},
                headers=reviewer,
            )
            assert response.status_code == 201
            final_id = response.json()["id"]
            world.clock.advance(minutes=5)
            response = await client.post(
                "/api/evaluations",
                json={
                    "proposal_id": str(pid),
                    "recommendation": "MINOR_REVISIONS",
                    "conflict_of_interest": True,
                },
                headers=other,
            )
            assert response.status_code == 201
            conflicted_id = response.json()["id"]

            async def ids(path, headers):
                response = await client.get(path, headers=headers)
                assert response.status_code == 200, response.text
                return [e["id"] for e in response.json()]

            assert await ids("/api/evaluations/final", chair) == [final_id]
            assert await ids(f"/api/evaluations/proposal/{pid}/final", chair) == [final_id]
            assert await ids("/api/evaluations/conflict-of-interest", chair) == [conflicted_id]
            assert await ids("/api/evaluations/recommendation/REJECT", chair) == [final_id]
            response = await client.get("/api/evaluations/recommendation/MAYBE", headers=chair)
            assert response.status_code == 422

            response = await client.get(f"/api/evaluations/proposal/{pid}/count", headers=chair)
            assert response.status_code == 200
            assert response.json() == 2
            response = await client.get(
                f"/api/evaluations/proposal/{pid}/count/final", headers=chair
            )
            assert response.json() == 1

            # Reviewers only ever see their own evaluations
            assert await ids("/api/evaluations/conflict-of-interest", reviewer) == []
            assert await ids(f"/api/evaluations/proposal/{pid}/final", other) == []
            assert await ids(
                f"/api/evaluations/reviewer/{world.other_reviewer.id}/pending", other
            ) == [conflicted_id]
            response = await client.get(
                f"/api/evaluations/reviewer/{world.reviewer.id}/pending", headers=other
            )
            assert response.status_code == 403

            # Counting needs the same access as viewing the proposal
            response = await client.get(f"/api/evaluations/proposal/{pid}/count", headers=reviewer)
            assert response.json() == 2
            response = await client.get(f"/api/evaluations/proposal/{pid}/count", headers=other)
            assert response.status_code == 403

        _run(scenario)


# ============================================================================
# AUTHENTICATION
# ============================================================================

class TestAuthentication:
    def test_missing_token_is_401(self):
        async def scenario(client, world):
            response = await client.get("/api/proposals")
            assert response.status_code == 401
            assert response.json()["code"] == "UNAUTHENTICATED"
            assert response.headers["WWW-Authenticate"] == "Bearer"
            assert "request_id" in response.json()

        _run(scenario)

    def test_public_routes_need_no_token(self):
        async def scenario(client, world):
            response = await client.get("/health")
            assert response.status_code == 200

        _run(scenario)

    def test_wrong_password(self):
        async def scenario(client, world):
            response = await client.post(
                "/api/auth/login", json={"username_or_email": "pi", "password": "nope"}
            )
            assert response.status_code == 401
            assert response.json()["detail"] == "Invalid username or password"

        _run(scenario)

    def test_login_by_email(self):
        async def scenario(client, world):
            headers = await _login(client, "chair@example.org")
            response = await client.get("/api/users/profile", headers=headers)
            assert response.json()["username"] == "chair"

        _run(scenario)

    def test_refresh_token_rejected_on_normal_routes(self):
        async def scenario(client, world):
            headers = _auth(world, world.pi, TokenKind.REFRESH)
            response = await client.get("/api/proposals", headers=headers)
            assert response.status_code == 401
            assert response.json()["code"] == "INVALID_TOKEN"

        _run(scenario)

    def test_refresh_issues_new_pair(self):
        async def scenario(client, world):
            token = world.app.state.token_codec.issue(
                world.pi.id, world.pi.username, world.pi.role, TokenKind.REFRESH
            )
            response = await client.post("/api/auth/refresh", json={"refresh_token": token})
            assert response.status_code == 200
            body = response.json()
            assert body["token_type"] == "Bearer"
            assert body["expires_in"] == 24 * 3600
            assert body["user"]["username"] == "pi"

            access = _auth(world, world.pi)["Authorization"].split(" ", 1)[1]
            response = await client.post("/api/auth/refresh", json={"refresh_token": access})
            assert response.status_code == 401

        _run(scenario)

    def test_expired_token(self):
        async def scenario(client, world):
            headers = _auth(world, world.pi)
            world.clock.advance(hours=24)
            response = await client.get("/api/proposals", headers=headers)
            assert response.status_code == 401
            assert response.json()["detail"] == "Token has expired"

        _run(scenario)

    def test_deactivated_account(self):
        async def scenario(client, world):
            headers = _auth(world, world.reviewer)
            response = await client.put(
                f"/api/users/{world.reviewer.id}/deactivate", headers=_auth(world, world.admin)
            )
            assert response.status_code == 200
            assert response.json()["is_active"] is False

            response = await client.get("/api/proposal-reviewers/my-assignments", headers=headers)
            assert response.status_code == 401
            assert response.json()["code"] == "ACCOUNT_INACTIVE"

        _run(scenario)

    def test_register_and_restricted_roles(self):
        async def scenario(client, world):
            response = await client.post(
                "/api/auth/register",
                json={
                    "username": "newpi",
                    "email": "NewPI@Example.org",
                    "password": "long-enough-password",
                },
            )
            assert response.status_code == 201, response.text
            assert response.json()["user"]["role"] == "PRINCIPAL_INVESTIGATOR"
            assert response.json()["user"]["email"] == "newpi@example.org"

            response = await client.post(
                "/api/auth/register",
                json={"username": "newpi", "email": "other@example.org", "password": "long-enough-password"},
            )
            assert response.status_code == 409
            assert response.json()["code"] == "DUPLICATE_RESOURCE"

            response = await client.post(
                "/api/auth/register",
                json={
                    "username": "sneaky",
                    "email": "sneaky@example.org",
                    "password": "long-enough-password",
                    "role": "ADMIN",
                },
            )
            assert response.status_code == 400
            assert response.json()["code"] == "INVALID_ROLE"

        _run(scenario)


# ============================================================================
# AUTHORIZATION
# ============================================================================

class TestAuthorization:
    def test_role_denied_is_403(self):
        async def scenario(client, world):
            response = await client.get("/api/proposals", headers=_auth(world, world.finance))
            assert response.status_code == 403
            assert response.json()["code"] == "FORBIDDEN"

        _run(scenario)

    def test_unassigned_reviewer_cannot_read_proposal(self):
        async def scenario(client, world):
            async with world.database.session() as db:
                proposal = await make_proposal(db, world.pi, world.dept, ProposalStatus.SUBMITTED)
            response = await client.get(
                f"/api/proposals/{proposal.id}", headers=_auth(world, world.other_reviewer)
            )
            assert response.status_code == 403

            response = await client.get(
                f"/api/proposals/{proposal.id}", headers=_auth(world, world.finance)
            )
            assert response.status_code == 200

        _run(scenario)

    def test_can_delete_follows_proposal_visibility(self):
        async def scenario(client, world):
            async with world.database.session() as db:
                proposal = await make_proposal(db, world.pi, world.dept, ProposalStatus.SUBMITTED)
                await make_assignment(db, proposal, world.reviewer, world.chair)
            path = f"/api/proposals/{proposal.id}/can-delete"

            response = await client.get(path, headers=_auth(world, world.other_reviewer))
            assert response.status_code == 403

            response = await client.get(path, headers=_auth(world, world.reviewer))
            assert response.status_code == 200
            assert response.json()["can_delete"] is True

            response = await client.get(path, headers=_auth(world, world.chair))
            assert response.status_code == 200

        _run(scenario)

    def test_role_change_applies_to_existing_token(self):
        async def scenario(client, world):
            headers = _auth(world, world.head)
            assert (await client.get("/api/evaluations", headers=headers)).status_code == 200

            response = await client.post(
                "/api/auth/admin/update-role",
                json={"user_id": str(world.head.id), "role": "STAKEHOLDER"},
                headers=_auth(world, world.admin),
            )
            assert response.status_code == 200
            assert response.json()["role"] == "STAKEHOLDER"

            assert (await client.get("/api/evaluations", headers=headers)).status_code == 403

        _run(scenario)

    def test_profile_update_cannot_change_role(self):
        async def scenario(client, world):
            headers = _auth(world, world.reviewer)
            response = await client.put(
                "/api/users/profile", json={"role": "ADMIN"}, headers=headers
            )
            assert response.status_code == 422

            response = await client.put(
                "/api/users/profile", json={"office_location": "B-204"}, headers=headers
            )
            assert response.status_code == 200
            assert response.json()["office_location"] == "B-204"
            assert response.json()["role"] == "REVIEWER"

        _run(scenario)

    def test_cannot_update_another_users_profile(self):
        async def scenario(client, world):
            response = await client.put(
                f"/api/users/{world.pi.id}",
                json={"first_name": "Mallory"},
                headers=_auth(world, world.reviewer),
            )
            assert response.status_code == 403

        _run(scenario)

    def test_reviewer_statistics_only_for_self(self):
        async def scenario(client, world):
            headers = _auth(world, world.reviewer)
            own = await client.get(
                f"/api/proposal-reviewers/reviewer/{world.reviewer.id}/statistics", headers=headers
            )
            assert own.status_code == 200
            assert own.json()["total"] == 0

            other = await client.get(
                f"/api/proposal-reviewers/reviewer/{world.other_reviewer.id}/statistics",
                headers=headers,
            )
            assert other.status_code == 403

        _run(scenario)


# ============================================================================
# PAYLOAD VALIDATION
# ============================================================================

class TestNullPayloads:
    def test_proposal_required_fields_cannot_be_nulled(self):
        async def scenario(client, world):
            pi = _auth(world, world.pi)
            proposal = await _new_proposal(client, world, pi)

            for field in ("title", "project_type", "priority_level"):
                response = await client.put(
                    f"/api/proposals/{proposal['id']}", json={field: None}, headers=pi
                )
                assert response.status_code == 422, field

            response = await client.get(f"/api/proposals/{proposal['id']}", headers=pi)
            assert response.json()["title"] == "Glacier melt sensors"

        _run(scenario)

    def test_evaluation_flags_cannot_be_nulled(self):
        async def scenario(client, world):
            async with world.database.session() as db:
                proposal = await make_proposal(db, world.pi, world.dept, ProposalStatus.UNDER_REVIEW)
            headers = _auth(world, world.reviewer)
            response = await client.post(
                "/api/evaluations", json={"proposal_id": str(proposal.id)}, headers=headers
            )
            evaluation_id = response.json()["id"]

            for field in ("is_final", "conflict_of_interest"):
                response = await client.put(
                    f"/api/evaluations/{evaluation_id}", json={field: None}, headers=headers
                )
                assert response.status_code == 422, field

            response = await client.get(f"/api/evaluations/{evaluation_id}", headers=headers)
            assert response.json()["is_final"] is False
            assert response.json()["conflict_of_interest"] is False

        _run(scenario)

    def test_profile_email_cannot_be_nulled(self):
        async def scenario(client, world):
            headers = _auth(world, world.reviewer)
            response = await client.put(
                "/api/users/profile", json={"email": None}, headers=headers
            )
            assert response.status_code == 422

            response = await client.get("/api/users/profile", headers=headers)
            assert response.json()["email"] == "rev@example.org"

        _run(scenario)
