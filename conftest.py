import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession as AsyncSessionSQLModel

import feedengine.models  # noqa: F401
from feedengine.core.config import settings
from feedengine.core.security import create_access_token
from feedengine.db.database import get_db
from feedengine.main import app
from feedengine.models.post import Post, PostTag
from feedengine.models.user import User
from feedengine.schemas.enums import PostType, PostVisibility

TEST_DATABASE_URL = settings.TEST_DATABASE_URL or "sqlite+aiosqlite://"
BASE_TIME = datetime(2026, 1, 1, 12, 0, 0)


@pytest_asyncio.fixture(scope="function")
async def async_test_engine():
    """Fresh database per test; in-memory SQLite unless TEST_DATABASE_URL points elsewhere."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        test_engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        test_engine = create_async_engine(
            TEST_DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1),
            echo=False,
            future=True,
            poolclass=NullPool,
        )
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)

    yield test_engine
    await test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_test_engine):
    return sessionmaker(
        bind=async_test_engine,
        class_=AsyncSessionSQLModel,
        expire_on_commit=False,
        autoflush=False
    )


@pytest_asyncio.fixture(scope="function")
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    async def _make_user(username: str, display_name: str = None) -> User:
        user = User(username=username, display_name=display_name)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def make_post(db):
    """Insert a post with an explicit timestamp so feed ordering is deterministic."""
    async def _make_post(
        author: User,
        minutes: int = 0,
        visibility: PostVisibility = PostVisibility.PUBLIC,
        post_type: PostType = PostType.TEXT,
        tags=(),
        likes: int = 0,
        content: str = None,
    ) -> Post:
        created_at = BASE_TIME + timedelta(minutes=minutes)
        post = Post(
            author_id=author.id,
            content=content or f"{author.username} at +{minutes}m",
            post_type=post_type,
            visibility=visibility,
            likes_count=likes,
            created_at=created_at,
            updated_at=created_at,
        )
        db.add(post)
        await db.flush()
        for tag in tags:
            db.add(PostTag(post_id=post.id, tag=tag))
        await db.commit()
        await db.refresh(post)
        return post
    return _make_post


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _auth_headers
