import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from pesquisa_app import auth, models
from pesquisa_app.crud import crud_survey, crud_user
from pesquisa_app.database import Base
from pesquisa_app.main import create_app
from pesquisa_app.schemas import SurveyCreate, UserCreate

PASSWORD = "asdfasdf"


@pytest.fixture()
def session_factory(tmp_path):
    """
    A throw-away SQLite database per test. The schema is created with the
    synchronous driver so the fixture works for sync and async tests alike.
    """
    db_file = tmp_path / "test.db"
    sync_engine = create_engine(f"sqlite:///{db_file}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_file}", poolclass=NullPool)
    yield async_sessionmaker(
        bind=engine, class_=AsyncSession, autoflush=False, expire_on_commit=False
    )


@pytest.fixture()
def app(session_factory):
    app = create_app(session_factory=session_factory)
    app.state.watchers.debounce = 0
    return app


@pytest.fixture()
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture()
def email_tokens(monkeypatch):
    """Captures the tokens that would be mailed out, keyed by email."""
    sent = {}

    def capture(user, purpose, token):
        sent[(user.email, purpose)] = token

    monkeypatch.setattr(auth, "dispatch_email_token", capture)
    return sent


async def create_user(session_factory, name, email, role="researcher", confirmed=True):
    async with session_factory() as db:
        user, _ = await crud_user.create_user(
            db,
            UserCreate(name=name, email=email, role=role, password=PASSWORD),
            email_confirmed=confirmed,
        )
        return user


async def create_survey(session_factory, name="Pesquisa Eleitoral", city="São Paulo", state="SP"):
    async with session_factory() as db:
        return await crud_survey.create_survey(
            db,
            SurveyCreate(
                name=name,
                city=city,
                state=state,
                contractor="Instituto Exemplo",
                current_manager={"type": "Prefeito", "name": "Fulano"},
                questions=[
                    {"text": "Em quem você votaria?", "type": "multiple_choice",
                     "options": ["A", "B"], "required": True},
                    {"text": "Comentários", "type": "text"},
                ],
            ),
        )


@pytest.fixture()
async def admin_user(session_factory):
    return await create_user(session_factory, "Admin", "admin@test.org", role=models.ROLE_ADMIN)


@pytest.fixture()
async def researcher(session_factory):
    return await create_user(session_factory, "Ana Pesquisadora", "ana@test.org")


@pytest.fixture()
async def other_researcher(session_factory):
    return await create_user(session_factory, "Bruno Pesquisador", "bruno@test.org")


async def login(client, email, password=PASSWORD):
    response = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture()
async def admin_headers(client, admin_user):
    return await login(client, admin_user.email)


@pytest.fixture()
async def researcher_headers(client, researcher):
    return await login(client, researcher.email)
