import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-enough-length-0123456789")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from medbill.auth import create_token, hash_password
from medbill.database import Base, enable_sqlite_savepoints, get_db
from medbill.main import app
from medbill.models import Cie11Code, Company, Contract, Patient, User

STRONG_PASSWORD = "Sup3r$ecretPass"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def add(session_factory):
    """Persist rows in their own committed session and return them."""
    async def _add(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
            for row in rows:
                await session.refresh(row)
        return rows[0] if len(rows) == 1 else rows
    return _add


@pytest.fixture
def make_user(add):
    counter = {"n": 0}

    async def _make_user(role="biller", assigned_companies=None, can_view_all_companies=False, **kwargs):
        counter["n"] += 1
        username = kwargs.pop("username", f"user{counter['n']}")
        user = User(
            username=username,
            email=kwargs.pop("email", f"{username}@example.com"),
            password_hash=hash_password(kwargs.pop("password", STRONG_PASSWORD)),
            full_name=kwargs.pop("full_name", username.title()),
            role=role,
            assigned_companies=assigned_companies or [],
            can_view_all_companies=can_view_all_companies,
            custom_permissions=kwargs.pop("custom_permissions", []),
            **kwargs,
        )
        return await add(user)

    return _make_user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_token(user)}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
async def companies(add):
    c1, c2 = await add(
        Company(name="Clinica Uno", nit="900100100", code="C1"),
        Company(name="Clinica Dos", nit="900200200", code="C2"),
    )
    return c1, c2


@pytest.fixture
async def contract(add, companies):
    return await add(Contract(company_id=companies[0].id, name="Evento 2024", code="EV-24"))


@pytest.fixture
async def patient(add):
    return await add(
        Patient(
            document_type="CC",
            document_number="1000001",
            first_name="LAURA",
            first_last_name="MEJIA",
            gender="F",
            municipality="MEDELLIN",
            regimen="CONTRIBUTIVO",
        )
    )


@pytest.fixture
async def diagnoses(add):
    return await add(
        Cie11Code(code="1A00", description="Colera", chapter="Infecciosas"),
        Cie11Code(code="BA00", description="Hipertension esencial", chapter="Circulatorio"),
        Cie11Code(code="XX99", description="Codigo inactivo", chapter="Otros", active=False),
        Cie11Code(code="ZZ01", description="Codigo no facturable", chapter="Otros", billable=False),
    )
