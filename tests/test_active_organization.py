"""
Active organization selection tests.
"""

import time
import uuid

import pytest
from sqlalchemy import select

from app.core.security import active_org_redis_key, user_sessions_redis_key
from app.models.member import MemberRole, OrgMember
from app.models.organization import Organization, OrganizationType
from app.models.user import User
from app.services.session_service import (
    SWITCH_FORBIDDEN,
    SWITCH_NOT_FOUND,
    ActiveOrganizationService,
    Failed,
    Switched,
)
from helpers import auth_headers, create_org, login, register, setup_org_with_member


@pytest.fixture
async def user_and_org(db_session):
    user = User(email="u@example.com", password_hash="x")
    org = Organization(name="Acme", type=OrganizationType.CONTRACTOR)
    db_session.add_all([user, org])
    await db_session.flush()
    db_session.add(OrgMember(user_id=user.id, org_id=org.id, role=MemberRole.VIEWER))
    await db_session.flush()
    return user, org


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_switch_requires_membership(db_session, redis, user_and_org):
    _, org = user_and_org
    outsider = User(email="out@example.com", password_hash="x")
    db_session.add(outsider)
    await db_session.flush()
    service = ActiveOrganizationService(db_session, redis)

    result = await service.switch_active_organization(outsider.id, "sid-1", org.id)

    assert result == Failed(SWITCH_FORBIDDEN)
    assert await redis.get(active_org_redis_key("sid-1")) is None


@pytest.mark.asyncio
async def test_switch_to_missing_org_is_not_found(db_session, redis, user_and_org):
    user, _ = user_and_org
    service = ActiveOrganizationService(db_session, redis)

    result = await service.switch_active_organization(user.id, "sid-1", uuid.uuid4())

    assert result == Failed(SWITCH_NOT_FOUND)


@pytest.mark.asyncio
async def test_switch_and_read_back(db_session, redis, user_and_org):
    user, org = user_and_org
    service = ActiveOrganizationService(db_session, redis)

    result = await service.switch_active_organization(user.id, "sid-1", org.id)
    assert isinstance(result, Switched)
    assert result.organization.id == org.id

    active = await service.get_active_organization(user.id, "sid-1")
    assert active is not None
    assert active.organization.id == org.id
    assert active.membership.role == MemberRole.VIEWER

    # Other sessions of the same user are unaffected
    assert await service.get_active_organization(user.id, "sid-2") is None


@pytest.mark.asyncio
async def test_stale_pointer_is_dropped_on_read(db_session, redis, user_and_org):
    user, org = user_and_org
    service = ActiveOrganizationService(db_session, redis)
    await service.switch_active_organization(user.id, "sid-1", org.id)

    membership = await service.gate.get_membership(user.id, org.id)
    await db_session.delete(membership)
    await db_session.flush()

    assert await service.get_active_organization(user.id, "sid-1") is None
    assert await redis.get(active_org_redis_key("sid-1")) is None


@pytest.mark.asyncio
async def test_garbage_pointer_is_dropped(db_session, redis, user_and_org):
    user, _ = user_and_org
    await redis.set(active_org_redis_key("sid-1"), "not-a-uuid")

    assert await ActiveOrganizationService(db_session, redis).get_active_organization(user.id, "sid-1") is None
    assert await redis.get(active_org_redis_key("sid-1")) is None


@pytest.mark.asyncio
async def test_clear_for_membership_only_touches_matching_sessions(db_session, redis, user_and_org):
    user, org = user_and_org
    service = ActiveOrganizationService(db_session, redis)
    await service.set_active(user.id, "sid-1", org.id)
    await service.set_active(user.id, "sid-2", org.id)
    other_org_id = uuid.uuid4()
    await service.set_active(user.id, "sid-3", other_org_id)

    cleared = await service.clear_for_membership(user.id, org.id)

    assert cleared == 2
    assert await redis.get(active_org_redis_key("sid-1")) is None
    assert await redis.get(active_org_redis_key("sid-2")) is None
    assert await redis.get(active_org_redis_key("sid-3")) == str(other_org_id)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_no_active_org_after_login(client):
    a = await register(client, "a@example.com")
    resp = await client.get(
        "/api/v1/organizations/active",
        headers=auth_headers(a["tokens"]["access_token"]),
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "NO_ACTIVE_ORGANIZATION"


@pytest.mark.asyncio
async def test_creating_org_makes_it_active(client):
    a = await register(client, "a@example.com")
    token = a["tokens"]["access_token"]
    org = await create_org(client, token)

    resp = await client.get("/api/v1/organizations/active", headers=auth_headers(token))
    assert resp.status_code == 200
    assert resp.json()["id"] == org["id"]
    assert resp.json()["role"] == "ADMIN"

    resp = await client.get("/api/v1/auth/me", headers=auth_headers(token))
    assert resp.json()["active_organization_id"] == org["id"]


@pytest.mark.asyncio
async def test_switch_is_per_session(client):
    admin_token, member_token, org, _ = await setup_org_with_member(client)
    other_session = (await login(client, "member@example.com"))["access_token"]

    resp = await client.post(
        "/api/v1/organizations/switch",
        json={"organization_id": org["id"]},
        headers=auth_headers(member_token),
    )
    assert resp.status_code == 200
    assert resp.json()["active_organization"]["id"] == org["id"]
    assert resp.json()["active_organization"]["role"] == "MEMBER"

    resp = await client.get("/api/v1/organizations/active", headers=auth_headers(other_session))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_switch_status_codes(client):
    a = await register(client, "a@example.com")
    b = await register(client, "b@example.com")
    org_b = await create_org(client, b["tokens"]["access_token"])
    token = a["tokens"]["access_token"]

    resp = await client.post(
        "/api/v1/organizations/switch",
        json={"organization_id": str(uuid.uuid4())},
        headers=auth_headers(token),
    )
    assert resp.status_code == 404

    resp = await client.post(
        "/api/v1/organizations/switch",
        json={"organization_id": org_b["id"]},
        headers=auth_headers(token),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_active_org_survives_refresh(client):
    a = await register(client, "a@example.com")
    token = a["tokens"]["access_token"]
    org = await create_org(client, token)

    resp = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": a["tokens"]["refresh_token"]}
    )
    assert resp.status_code == 200
    new_token = resp.json()["access_token"]

    resp = await client.get("/api/v1/organizations/active", headers=auth_headers(new_token))
    assert resp.json()["id"] == org["id"]


@pytest.mark.asyncio
async def test_removed_member_loses_active_org(client):
    admin_token, member_token, org, member = await setup_org_with_member(client)
    await client.post(
        "/api/v1/organizations/switch",
        json={"organization_id": org["id"]},
        headers=auth_headers(member_token),
    )

    resp = await client.delete(
        f"/api/v1/organizations/{org['id']}/members/{member['id']}",
        headers=auth_headers(admin_token),
    )
    assert resp.status_code == 200

    resp = await client.get("/api/v1/organizations/active", headers=auth_headers(member_token))
    assert resp.status_code == 400

    resp = await client.get(f"/api/v1/organizations/{org['id']}", headers=auth_headers(member_token))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_switch_to_already_active_org_changes_nothing(db_session, redis, user_and_org):
    user, org = user_and_org
    service = ActiveOrganizationService(db_session, redis)

    first = await service.switch_active_organization(user.id, "sid-1", org.id)
    second = await service.switch_active_organization(user.id, "sid-1", org.id)

    assert isinstance(first, Switched)
    assert isinstance(second, Switched)
    active = await service.get_active_organization(user.id, "sid-1")
    assert active.organization.id == org.id

    result = await db_session.execute(select(OrgMember).where(OrgMember.user_id == user.id))
    memberships = result.scalars().all()
    assert len(memberships) == 1
    assert memberships[0].role == MemberRole.VIEWER


@pytest.mark.asyncio
async def test_expired_sessions_are_trimmed(db_session, redis, user_and_org):
    user, org = user_and_org
    service = ActiveOrganizationService(db_session, redis)
    key = user_sessions_redis_key(str(user.id))
    await redis.zadd(key, {"sid-old": time.time() - 60})

    await service.set_active(user.id, "sid-new", org.id)

    assert await redis.zrange(key, 0, -1) == ["sid-new"]
    assert await service.live_sessions(user.id) == ["sid-new"]
