import httpx
import pytest

from pesquisa_app.client import PesquisaClient, SessionState

from conftest import PASSWORD, create_survey


@pytest.fixture()
def state_file(tmp_path):
    return tmp_path / "session" / "state.json"


@pytest.fixture()
def make_client(app, state_file):
    def factory():
        return PesquisaClient(
            "http://test", SessionState.load(state_file), transport=httpx.ASGITransport(app=app)
        )

    return factory


def test_missing_state_file_starts_signed_out(state_file):
    state = SessionState.load(state_file)

    assert not state.is_authenticated
    assert state.user is None


def test_unreadable_state_file_is_ignored(state_file):
    state_file.parent.mkdir(parents=True)
    state_file.write_text("{not json", encoding="utf-8")

    state = SessionState.load(state_file)

    assert not state.is_authenticated


def test_error_is_not_persisted(state_file):
    state = SessionState(path=state_file)
    state.set_signed_in({"id": "u1", "email": "x@test.org"}, "tok")
    state.error = "boom"
    state.save()

    restored = SessionState.load(state_file)

    assert restored.access_token == "tok"
    assert restored.error is None


async def test_sign_in_survives_a_restart(make_client, researcher):
    client = make_client()
    user = await client.sign_in(researcher.email, PASSWORD)
    assert user["email"] == researcher.email

    restarted = make_client()
    assert restarted.state.is_authenticated
    assert (await restarted.check_session())["id"] == researcher.id


async def test_failed_sign_in_records_the_error(make_client, researcher):
    client = make_client()

    with pytest.raises(httpx.HTTPStatusError):
        await client.sign_in(researcher.email, "wrong-password")

    assert client.state.error == "Invalid email or password"
    assert not client.state.is_authenticated


async def test_sign_out_clears_persisted_state(make_client, researcher):
    client = make_client()
    await client.sign_in(researcher.email, PASSWORD)
    token = client.state.access_token

    await client.sign_out()

    assert not make_client().state.is_authenticated
    stale = make_client()
    stale.state.access_token = token
    assert await stale.check_session() is None
    assert not stale.state.is_authenticated


async def test_admin_and_researcher_round_trip(make_client, session_factory, admin_user, researcher):
    survey = await create_survey(session_factory, name="Saneamento")
    admin = make_client()
    await admin.sign_in(admin_user.email, PASSWORD)
    await admin.assign_survey(researcher.id, survey.id)
    assert [s["name"] for s in await admin.list_surveys()] == ["Saneamento"]
    await admin.sign_out()

    field = make_client()
    await field.sign_in(researcher.email, PASSWORD)
    assignments = await field.my_assignments()
    assert [a["survey_name"] for a in assignments] == ["Saneamento"]

    updated = await field.update_assignment_status(assignments[0]["id"], "in_progress")
    assert updated["status"] == "in_progress"
