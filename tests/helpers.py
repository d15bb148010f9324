"""
Request helpers shared by the API tests.
"""

import httpx


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def register(
    client: httpx.AsyncClient,
    email: str,
    name: str = "Test User",
    password: str = "password123",
    username: str | None = None,
) -> dict:
    body = {"email": email, "name": name, "password": password}
    if username is not None:
        body["username"] = username
    resp = await client.post("/api/v1/auth/register", json=body)
    assert resp.status_code == 201, f"Register failed: {resp.text}"
    return resp.json()


async def login(client: httpx.AsyncClient, email: str, password: str = "password123") -> dict:
    resp = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    return resp.json()


async def create_org(
    client: httpx.AsyncClient, token: str, name: str = "Acme", type: str = "CONTRACTOR"
) -> dict:
    resp = await client.post(
        "/api/v1/organizations",
        json={"name": name, "type": type},
        headers=auth_headers(token),
    )
    assert resp.status_code == 201, f"Create org failed: {resp.text}"
    return resp.json()


async def invite(
    client: httpx.AsyncClient, token: str, org_id: str, user_id: str, role: str = "MEMBER"
) -> httpx.Response:
    return await client.post(
        f"/api/v1/organizations/{org_id}/invite",
        json={"user_id": user_id, "role": role},
        headers=auth_headers(token),
    )


async def setup_org_with_member(
    client: httpx.AsyncClient, member_role: str = "MEMBER"
) -> tuple[str, str, dict, dict]:
    """Create an org owned by an admin and add a second user. Returns (admin_token, member_token, org, member)."""
    admin = await register(client, "admin@example.com", name="Org Admin")
    member = await register(client, "member@example.com", name="Org Member")
    admin_token = admin["tokens"]["access_token"]
    member_token = member["tokens"]["access_token"]
    org = await create_org(client, admin_token)
    resp = await invite(client, admin_token, org["id"], member["user"]["id"], member_role)
    assert resp.status_code == 201, f"Invite failed: {resp.text}"
    return admin_token, member_token, org, resp.json()
