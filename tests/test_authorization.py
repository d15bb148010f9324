"""
Authorization gate tests.

Role ordering, membership checks and the 403 bodies the API returns.
"""

import uuid

import pytest

from app.models.member import MemberRole, OrgMember
from app.models.organization import Organization, OrganizationType
from app.models.user import User
from app.services.authorization_service import (
    INSUFFICIENT_ROLE,
    NOT_A_MEMBER,
    Allowed,
    AuthorizationGate,
    Denied,
)
from helpers import auth_headers, create_org, register, setup_org_with_member

ROLES = [MemberRole.ADMIN, MemberRole.MEMBER, MemberRole.VIEWER]


async def make_membership(db, role: MemberRole) -> tuple[User, Organization]:
    user = User(email=f"{uuid.uuid4().hex[:8]}@example.com", password_hash="x")
    org = Organization(name="Acme", type=OrganizationType.CONTRACTOR)
    db.add_all([user, org])
    await db.flush()
    db.add(OrgMember(user_id=user.id, org_id=org.id, role=role))
    await db.flush()
    return user, org


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

def test_role_order():
    assert MemberRole.ADMIN.satisfies(MemberRole.MEMBER)
    assert MemberRole.MEMBER.satisfies(MemberRole.VIEWER)
    assert MemberRole.VIEWER.satisfies(MemberRole.VIEWER)
    assert not MemberRole.VIEWER.satisfies(MemberRole.MEMBER)
    assert not MemberRole.MEMBER.satisfies(MemberRole.ADMIN)


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ROLES)
@pytest.mark.parametrize("min_role", ROLES)
async def test_authorize_allows_iff_role_at_least_min_role(db_session, role, min_role):
    user, org = await make_membership(db_session, role)

    decision = await AuthorizationGate(db_session).authorize(user.id, org.id, min_role)

    if role.rank >= min_role.rank:
        assert isinstance(decision, Allowed)
        assert decision.membership.role == role
    else:
        assert decision == Denied(INSUFFICIENT_ROLE)


@pytest.mark.asyncio
async def test_authorize_denies_non_member(db_session):
    _, org = await make_membership(db_session, MemberRole.ADMIN)
    outsider = User(email="outsider@example.com", password_hash="x")
    db_session.add(outsider)
    await db_session.flush()

    decision = await AuthorizationGate(db_session).authorize(outsider.id, org.id)

    assert decision == Denied(NOT_A_MEMBER)


@pytest.mark.asyncio
async def test_missing_org_looks_like_missing_membership(db_session):
    user, _ = await make_membership(db_session, MemberRole.ADMIN)

    decision = await AuthorizationGate(db_session).authorize(user.id, uuid.uuid4())

    assert decision == Denied(NOT_A_MEMBER)


# ---------------------------------------------------------------------------
# HTTP enforcement
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cannot_access_other_org(client):
    a = await register(client, "a@example.com", name="User A")
    b = await register(client, "b@example.com", name="User B")
    await create_org(client, a["tokens"]["access_token"], name="Org A")
    org_b = await create_org(client, b["tokens"]["access_token"], name="Org B")

    for path in (f"/api/v1/organizations/{org_b['id']}", f"/api/v1/organizations/{org_b['id']}/members"):
        resp = await client.get(path, headers=auth_headers(a["tokens"]["access_token"]))
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "NOT_A_MEMBER"


@pytest.mark.asyncio
async def test_unknown_org_returns_same_403(client):
    a = await register(client, "a@example.com")
    resp = await client.get(
        f"/api/v1/organizations/{uuid.uuid4()}",
        headers=auth_headers(a["tokens"]["access_token"]),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["code"] == "NOT_A_MEMBER"


@pytest.mark.asyncio
async def test_viewer_can_read_but_not_update(client):
    _, viewer_token, org, _ = await setup_org_with_member(client, member_role="VIEWER")

    resp = await client.get(f"/api/v1/organizations/{org['id']}", headers=auth_headers(viewer_token))
    assert resp.status_code == 200

    resp = await client.patch(
        f"/api/v1/organizations/{org['id']}",
        json={"name": "Renamed"},
        headers=auth_headers(viewer_token),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == {
        "code": "INSUFFICIENT_ROLE",
        "message": "Required role: ADMIN or higher",
    }


@pytest.mark.asyncio
async def test_member_cannot_change_roles(client):
    admin_token, member_token, org, member = await setup_org_with_member(client)

    resp = await client.patch(
        f"/api/v1/organizations/{org['id']}/members/{member['id']}",
        json={"role": "ADMIN"},
        headers=auth_headers(member_token),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_unauthenticated_request_rejected(client):
    resp = await client.get(f"/api/v1/organizations/{uuid.uuid4()}")
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "MISSING_TOKEN"


@pytest.mark.asyncio
async def test_malformed_token_rejected(client):
    resp = await client.get("/api/v1/organizations", headers=auth_headers("not.a.jwt"))
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_refresh_token_cannot_be_used_as_access_token(client):
    a = await register(client, "a@example.com")
    resp = await client.get(
        "/api/v1/organizations",
        headers=auth_headers(a["tokens"]["refresh_token"]),
    )
    assert resp.status_code == 401
