import asyncio

import pytest
import pytest_asyncio
from hypothesis import HealthCheck, given, settings as hypothesis_settings, strategies as st
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession as AsyncSessionSQLModel

import feedengine.models  # noqa: F401
from feedengine.core.config import settings
from feedengine.core.exceptions import InvalidCursorError, NotFoundError, SelfFollowError
from feedengine.crud.follow import (
    follow_user,
    get_follower_ids,
    get_following_ids,
    get_friend_ids,
    is_mutual,
    list_followers,
    list_following,
    list_friends,
    unfollow_user,
)
from feedengine.models.follow import Friendship, UserFollow
from feedengine.models.user import User


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar_one()


async def test_follow_is_idempotent(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")

    first = await follow_user(db, alice.id, bob.id)
    second = await follow_user(db, alice.id, bob.id)

    assert first == second
    assert first.following and not first.is_friend
    assert await _count(db, UserFollow) == 1

    await db.refresh(alice)
    await db.refresh(bob)
    assert alice.following_count == 1
    assert bob.followers_count == 1


async def test_unfollow_is_idempotent(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await follow_user(db, alice.id, bob.id)

    await unfollow_user(db, alice.id, bob.id)
    await unfollow_user(db, alice.id, bob.id)

    assert await _count(db, UserFollow) == 0
    await db.refresh(alice)
    await db.refresh(bob)
    assert alice.following_count == 0
    assert bob.followers_count == 0


async def test_unfollow_without_edge_is_noop(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    result = await unfollow_user(db, alice.id, bob.id)
    assert not result.following
    await db.refresh(bob)
    assert bob.followers_count == 0


async def test_self_follow_is_rejected(db, make_user):
    alice = await make_user("alice")
    with pytest.raises(SelfFollowError):
        await follow_user(db, alice.id, alice.id)
    assert await _count(db, UserFollow) == 0


async def test_follow_unknown_user(db, make_user):
    alice = await make_user("alice")
    with pytest.raises(NotFoundError):
        await follow_user(db, alice.id, "no-such-user")
    assert await _count(db, UserFollow) == 0


async def test_mutual_follow_materializes_friendship(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")

    await follow_user(db, alice.id, bob.id)
    assert not await is_mutual(db, alice.id, bob.id)

    result = await follow_user(db, bob.id, alice.id)
    assert result.is_friend
    assert await is_mutual(db, alice.id, bob.id)
    assert await is_mutual(db, bob.id, alice.id)
    assert await _count(db, Friendship) == 1

    row = (await db.execute(select(Friendship))).scalars().one()
    assert row.user_id_1 < row.user_id_2

    edges = (await db.execute(select(UserFollow))).scalars().all()
    assert all(edge.is_mutual for edge in edges)

    await db.refresh(alice)
    await db.refresh(bob)
    assert alice.friends_count == 1
    assert bob.friends_count == 1


async def test_unfollow_demolishes_friendship(db, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    await follow_user(db, alice.id, bob.id)
    await follow_user(db, bob.id, alice.id)

    await unfollow_user(db, bob.id, alice.id)

    assert not await is_mutual(db, alice.id, bob.id)
    assert await _count(db, Friendship) == 0
    remaining = (await db.execute(select(UserFollow))).scalars().one()
    assert remaining.follower_id == alice.id
    assert not remaining.is_mutual

    await db.refresh(alice)
    assert alice.friends_count == 0
    assert alice.following_count == 1
    assert alice.followers_count == 0


async def test_mutual_edge_scenario(db, make_user):
    """A follows B, B follows A; B unfollows; A still follows B, no friendship."""
    a = await make_user("user_a")
    b = await make_user("user_b")

    await follow_user(db, a.id, b.id)
    await follow_user(db, b.id, a.id)
    assert await get_friend_ids(db, a.id) == {b.id}
    assert await get_friend_ids(db, b.id) == {a.id}

    await unfollow_user(db, b.id, a.id)
    assert await get_following_ids(db, a.id) == {b.id}
    assert await get_follower_ids(db, a.id) == set()
    assert await get_friend_ids(db, a.id) == set()


async def test_is_mutual_with_self_is_false(db, make_user):
    alice = await make_user("alice")
    assert not await is_mutual(db, alice.id, alice.id)


async def test_relationship_listings_paginate(db, make_user):
    hub = await make_user("hub")
    fans = [await make_user(f"fan{i}") for i in range(5)]
    for fan in fans:
        await follow_user(db, fan.id, hub.id)
    await follow_user(db, hub.id, fans[0].id)

    seen = []
    cursor = None
    while True:
        users, cursor, has_more = await list_followers(db, hub.id, limit=2, cursor=cursor)
        seen.extend(users)
        if not has_more:
            assert cursor is None
            break
    assert sorted(user.id for user in seen) == sorted(fan.id for fan in fans)
    assert len(seen) == 5
    assert [user.id for user in seen if user.is_mutual] == [fans[0].id]

    following, _, _ = await list_following(db, hub.id)
    assert [user.id for user in following] == [fans[0].id]

    friends, next_cursor, has_more = await list_friends(db, hub.id)
    assert [user.id for user in friends] == [fans[0].id]
    assert friends[0].is_mutual
    assert next_cursor is None and not has_more


async def test_relationship_listing_rejects_bad_cursor(db, make_user):
    hub = await make_user("hub")
    with pytest.raises(InvalidCursorError):
        await list_followers(db, hub.id, cursor="definitely-not-a-cursor")


USER_COUNT = 4

operation = st.tuples(
    st.integers(min_value=0, max_value=USER_COUNT - 1),
    st.integers(min_value=0, max_value=USER_COUNT - 1),
    st.booleans(),
)


async def _check_graph_invariants(db, user_ids):
    edges = {
        (edge.follower_id, edge.followed_id): edge.is_mutual
        for edge in (await db.execute(select(UserFollow))).scalars().all()
    }
    friendships = {
        (row.user_id_1, row.user_id_2)
        for row in (await db.execute(select(Friendship))).scalars().all()
    }

    for a in user_ids:
        for b in user_ids:
            if a >= b:
                continue
            both = (a, b) in edges and (b, a) in edges
            assert ((a, b) in friendships) == both
            assert await is_mutual(db, a, b) == both
            for pair in ((a, b), (b, a)):
                if pair in edges:
                    assert edges[pair] == both

    for friendship in friendships:
        assert friendship[0] < friendship[1]

    users = (await db.execute(select(User))).scalars().all()
    for user in users:
        await db.refresh(user)
        assert user.following_count == sum(1 for (f, _) in edges if f == user.id)
        assert user.followers_count == sum(1 for (_, t) in edges if t == user.id)
        assert user.friends_count == sum(1 for pair in friendships if user.id in pair)


async def _run_operations(operations):
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    factory = sessionmaker(bind=engine, class_=AsyncSessionSQLModel, expire_on_commit=False)

    try:
        async with factory() as db:
            users = [User(username=f"user{i}") for i in range(USER_COUNT)]
            db.add_all(users)
            await db.commit()
            user_ids = [user.id for user in users]

            for actor, target, is_follow in operations:
                if is_follow:
                    if actor == target:
                        with pytest.raises(SelfFollowError):
                            await follow_user(db, user_ids[actor], user_ids[target])
                    else:
                        await follow_user(db, user_ids[actor], user_ids[target])
                else:
                    await unfollow_user(db, user_ids[actor], user_ids[target])
                await _check_graph_invariants(db, user_ids)
    finally:
        await engine.dispose()


@hypothesis_settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(operations=st.lists(operation, max_size=15))
def test_friendship_tracks_mutual_edges(operations):
    asyncio.run(_run_operations(operations))


@pytest_asyncio.fixture
async def separate_sessions(tmp_path):
    """Session factory whose sessions each hold their own connection"""
    url = settings.TEST_DATABASE_URL
    if not url or url.startswith("sqlite"):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'graph.db'}",
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )

        # SQLite has no row locks; IMMEDIATE transactions serialize writers
        # the way the user-row locks do on PostgreSQL
        @event.listens_for(engine.sync_engine, "connect")
        def _no_implicit_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        engine = create_async_engine(
            url.replace("postgresql://", "postgresql+asyncpg://", 1),
            poolclass=NullPool,
        )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    factory = sessionmaker(bind=engine, class_=AsyncSessionSQLModel, expire_on_commit=False)
    yield factory
    await engine.dispose()


async def _create_pair(factory):
    async with factory() as db:
        alice = User(username="alice")
        bob = User(username="bob")
        db.add_all([alice, bob])
        await db.commit()
        return alice.id, bob.id


async def _follow_in_own_session(factory, follower_id, followed_id):
    async with factory() as db:
        return await follow_user(db, follower_id, followed_id)


async def test_concurrent_duplicate_follows_write_one_edge(separate_sessions):
    alice_id, bob_id = await _create_pair(separate_sessions)

    results = await asyncio.gather(
        _follow_in_own_session(separate_sessions, alice_id, bob_id),
        _follow_in_own_session(separate_sessions, alice_id, bob_id),
    )
    assert all(result.following and not result.is_friend for result in results)

    async with separate_sessions() as db:
        assert await _count(db, UserFollow) == 1
        assert await _count(db, Friendship) == 0
        alice = await db.get(User, alice_id)
        bob = await db.get(User, bob_id)
        assert alice.following_count == 1
        assert bob.followers_count == 1


async def test_crossed_follows_make_one_friendship(separate_sessions):
    alice_id, bob_id = await _create_pair(separate_sessions)

    results = await asyncio.gather(
        _follow_in_own_session(separate_sessions, alice_id, bob_id),
        _follow_in_own_session(separate_sessions, bob_id, alice_id),
    )
    # whichever commits second sees the other edge
    assert sorted(result.is_friend for result in results) == [False, True]

    async with separate_sessions() as db:
        assert await _count(db, UserFollow) == 2
        assert await _count(db, Friendship) == 1
        await _check_graph_invariants(db, [alice_id, bob_id])
        for user_id in (alice_id, bob_id):
            user = await db.get(User, user_id)
            assert (user.following_count, user.followers_count, user.friends_count) == (1, 1, 1)
