from __future__ import annotations

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import mindwell.models  # noqa: F401
from mindwell.db import Base, get_db
from mindwell.main import app
from mindwell.models import User
from mindwell.services.auth_service import create_access_token, hash_password


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def make_user(db: AsyncSession, email: str, *, role: str = "patient", first_name: str = "Ana",
                    last_name: str = "Souza", therapist_id=None, specialization=None) -> User:
    user = User(
        email=email,
        password_hash=hash_password("secret-password"),
        role=role,
        first_name=first_name,
        last_name=last_name,
        therapist_id=therapist_id,
        specialization=specialization,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def therapist(db):
    return await make_user(
        db, "dra.lima@example.com", role="therapist", first_name="Carla", last_name="Lima",
        specialization="Ansiedade",
    )


@pytest_asyncio.fixture
async def patient(db, therapist):
    return await make_user(db, "joao@example.com", first_name="João", last_name="Silva", therapist_id=therapist.id)


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    # ASGITransport does not run the lifespan, so Kafka stays off
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def user_factory(db):
    async def factory(email: str, **kwargs) -> User:
        return await make_user(db, email, **kwargs)
    return factory
