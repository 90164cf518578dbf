from datetime import timedelta

from pesquisa_app import models
from pesquisa_app.utils import hash_token, utcnow

from conftest import PASSWORD, create_user, login


async def test_login_returns_token_and_profile(client, researcher):
    response = await client.post(
        "/api/auth/login", json={"email": "ANA@test.org ", "password": PASSWORD}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["user"]["email"] == "ana@test.org"
    assert data["user"]["role"] == "researcher"


async def test_wrong_password_is_401(client, researcher):
    response = await client.post(
        "/api/auth/login", json={"email": researcher.email, "password": "wrong-password"}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"
    assert response.headers["www-authenticate"] == "Bearer"


async def test_unconfirmed_email_cannot_sign_in(client, session_factory):
    await create_user(session_factory, "Caio", "caio@test.org", confirmed=False)

    response = await client.post(
        "/api/auth/login", json={"email": "caio@test.org", "password": PASSWORD}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Email not confirmed"


async def test_admin_created_user_confirms_email_then_signs_in(
    client, admin_headers, email_tokens
):
    created = await client.post(
        "/api/users",
        json={"name": "Dora", "email": "dora@test.org", "password": "segredo1"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    assert created.json()["email_confirmed"] is False
    assert created.json()["first_access"] is True

    token = email_tokens[("dora@test.org", "confirm_email")]
    confirmed = await client.post("/api/auth/confirm-email", json={"token": token})
    assert confirmed.status_code == 200
    assert confirmed.json()["email_confirmed"] is True

    reused = await client.post("/api/auth/confirm-email", json={"token": token})
    assert reused.status_code == 422

    await login(client, "dora@test.org", "segredo1")


async def test_duplicate_email_is_rejected(client, admin_headers, researcher):
    response = await client.post(
        "/api/users",
        json={"name": "Ana 2", "email": researcher.email, "password": "segredo1"},
        headers=admin_headers,
    )

    assert response.status_code == 422


async def test_logout_invalidates_the_token(client, researcher_headers):
    assert (await client.get("/api/auth/session", headers=researcher_headers)).status_code == 200

    response = await client.post("/api/auth/logout", headers=researcher_headers)

    assert response.status_code == 200
    assert (await client.get("/api/auth/session", headers=researcher_headers)).status_code == 401


async def test_expired_session_is_rejected(client, session_factory, researcher_headers):
    token = researcher_headers["Authorization"].split()[1]
    async with session_factory() as db:
        auth_session = await db.get(models.AuthSession, hash_token(token))
        auth_session.expires_at = utcnow() - timedelta(minutes=1)
        await db.commit()

    response = await client.get("/api/auth/session", headers=researcher_headers)

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"
    async with session_factory() as db:
        assert await db.get(models.AuthSession, hash_token(token)) is None


async def test_malformed_authorization_header(client):
    response = await client.get("/api/auth/session", headers={"Authorization": "Token abc"})

    assert response.status_code == 401
    assert "Bearer" in response.json()["detail"]


async def test_password_reset_flow(client, researcher, researcher_headers, email_tokens):
    requested = await client.post("/api/auth/password-reset", json={"email": researcher.email})
    assert requested.status_code == 202

    token = email_tokens[(researcher.email, "reset_password")]
    reset = await client.post(
        "/api/auth/password-reset/confirm", json={"token": token, "password": "novasenha"}
    )
    assert reset.status_code == 200

    # Existing sessions end with the reset
    assert (await client.get("/api/auth/session", headers=researcher_headers)).status_code == 401
    failed = await client.post(
        "/api/auth/login", json={"email": researcher.email, "password": PASSWORD}
    )
    assert failed.status_code == 401
    await login(client, researcher.email, "novasenha")


async def test_password_reset_for_unknown_email_looks_the_same(client, email_tokens):
    response = await client.post("/api/auth/password-reset", json={"email": "ghost@test.org"})

    assert response.status_code == 202
    assert email_tokens == {}


async def test_first_password_change_clears_first_access(client, researcher_headers):
    response = await client.post(
        "/api/auth/password", json={"password": "outrasenha"}, headers=researcher_headers
    )
    assert response.status_code == 200

    session = await client.get("/api/auth/session", headers=researcher_headers)
    assert session.json()["first_access"] is False


async def test_admin_updates_profile_but_not_role(client, admin_headers, researcher):
    renamed = await client.put(
        f"/api/users/{researcher.id}",
        json={"name": "Ana Souza", "cpf": "123.456.789-00"},
        headers=admin_headers,
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Ana Souza"
    assert renamed.json()["role"] == "researcher"

    promoted = await client.put(
        f"/api/users/{researcher.id}", json={"role": "admin"}, headers=admin_headers
    )
    assert promoted.status_code == 422


async def test_researcher_cannot_manage_users(client, researcher_headers):
    response = await client.get("/api/users", headers=researcher_headers)

    assert response.status_code == 403
