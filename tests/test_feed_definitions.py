import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from feedengine.core.config import settings
from feedengine.core.exceptions import (
    ConflictError,
    InvalidFilterError,
    NotFoundError,
    UnsupportedFilterError,
)
from feedengine.crud import feed_definition as feed_definition_module
from feedengine.crud.feed_definition import (
    create_feed_definition,
    delete_feed_definition,
    get_default_feed_definition,
    get_feed_definition,
    list_feed_definitions,
    update_feed_definition,
)
from feedengine.models.feed_definition import FeedDefinition
from feedengine.schemas.feed import FeedDefinitionCreate, FeedDefinitionUpdate


async def test_create_stores_normalized_blocks(db, make_user):
    owner = await make_user("owner")
    feed = await create_feed_definition(db, owner.id, FeedDefinitionCreate(
        name="Travel pics",
        blocks=[{"type": "tag", "values": ["#Travel"]}, {"type": "limit", "count": 5}],
    ))

    assert feed.owner_id == owner.id
    assert feed.combine_mode == "AND"
    assert feed.blocks == [
        {"type": "tag", "operator": "include", "values": ["travel"]},
        {"type": "limit", "count": 5},
    ]


async def test_unknown_block_is_rejected_before_saving(db, make_user):
    owner = await make_user("owner")
    with pytest.raises(UnsupportedFilterError):
        await create_feed_definition(db, owner.id, FeedDefinitionCreate(
            name="weird", blocks=[{"type": "weather", "values": ["sunny"]}]
        ))
    assert await list_feed_definitions(db, owner.id) == []


async def test_invalid_block_is_rejected(db, make_user):
    owner = await make_user("owner")
    with pytest.raises(InvalidFilterError):
        await create_feed_definition(db, owner.id, FeedDefinitionCreate(
            name="bad", blocks=[{"type": "limit", "count": -1}]
        ))


async def test_name_must_be_unique_per_owner(db, make_user):
    owner = await make_user("owner")
    other = await make_user("other")
    await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="Music"))

    with pytest.raises(ConflictError):
        await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="music "))

    # another owner may reuse the name
    await create_feed_definition(db, other.id, FeedDefinitionCreate(name="Music"))


async def test_feed_count_is_bounded(db, make_user, monkeypatch):
    owner = await make_user("owner")
    monkeypatch.setattr(settings, "MAX_FEEDS_PER_USER", 2)
    await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="one"))
    await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="two"))

    with pytest.raises(ConflictError) as exc_info:
        await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="three"))
    assert exc_info.value.error_code == "FEED_LIMIT_REACHED"


async def test_only_one_default_per_owner(db, make_user):
    owner = await make_user("owner")
    first = await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="first", is_default=True))
    second = await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="second", is_default=True))

    default = await get_default_feed_definition(db, owner.id)
    assert default.id == second.id

    await update_feed_definition(db, owner.id, first.id, FeedDefinitionUpdate(is_default=True))
    feeds = {feed.id: feed for feed in await list_feed_definitions(db, owner.id)}
    for feed in feeds.values():
        await db.refresh(feed)
    assert feeds[first.id].is_default
    assert not feeds[second.id].is_default


async def test_update_revalidates_blocks(db, make_user):
    owner = await make_user("owner")
    feed = await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="feed"))

    updated = await update_feed_definition(db, owner.id, feed.id, FeedDefinitionUpdate(
        blocks=[{"type": "post_type", "values": ["video"]}],
        combine_mode="OR",
    ))
    assert updated.combine_mode == "OR"
    assert updated.blocks == [{"type": "post_type", "operator": "include", "values": ["video"]}]

    with pytest.raises(UnsupportedFilterError):
        await update_feed_definition(db, owner.id, feed.id, FeedDefinitionUpdate(
            blocks=[{"type": "feed", "feed_id": feed.id}]
        ))


async def test_rename_conflict(db, make_user):
    owner = await make_user("owner")
    await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="taken"))
    feed = await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="mine"))

    with pytest.raises(ConflictError):
        await update_feed_definition(db, owner.id, feed.id, FeedDefinitionUpdate(name="Taken"))

    renamed = await update_feed_definition(db, owner.id, feed.id, FeedDefinitionUpdate(name="Mine"))
    assert renamed.name == "Mine"


async def test_other_users_feed_is_not_found(db, make_user):
    owner = await make_user("owner")
    intruder = await make_user("intruder")
    feed = await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="private"))

    with pytest.raises(NotFoundError):
        await get_feed_definition(db, intruder.id, feed.id)
    with pytest.raises(NotFoundError):
        await delete_feed_definition(db, intruder.id, feed.id)
    with pytest.raises(NotFoundError):
        await update_feed_definition(db, intruder.id, feed.id, FeedDefinitionUpdate(name="mine now"))


async def test_delete(db, make_user):
    owner = await make_user("owner")
    feed = await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="gone"))
    await delete_feed_definition(db, owner.id, feed.id)

    assert await db.get(FeedDefinition, feed.id) is None
    with pytest.raises(NotFoundError):
        await get_feed_definition(db, owner.id, feed.id)


def test_update_requires_a_field():
    with pytest.raises(ValueError):
        FeedDefinitionUpdate()


async def test_default_moves_back_to_a_loaded_definition(db, make_user):
    owner = await make_user("owner")
    first = await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="first", is_default=True))
    await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="second", is_default=True))

    # `first` is still in the session from its creation
    updated = await update_feed_definition(db, owner.id, first.id, FeedDefinitionUpdate(is_default=True))
    assert updated.is_default

    default = await get_default_feed_definition(db, owner.id)
    assert default is not None
    assert default.id == first.id

    count = await db.execute(
        select(func.count()).select_from(FeedDefinition).where(
            FeedDefinition.owner_id == owner.id,
            FeedDefinition.is_default == True  # noqa: E712
        )
    )
    assert count.scalar_one() == 1


def test_blank_name_is_rejected():
    with pytest.raises(ValidationError):
        FeedDefinitionCreate(name="   ")
    with pytest.raises(ValidationError):
        FeedDefinitionUpdate(name="  \t ")


async def test_name_is_stored_stripped(db, make_user):
    owner = await make_user("owner")
    feed = await create_feed_definition(db, owner.id, FeedDefinitionCreate(name="  Music  "))
    assert feed.name == "Music"


async def test_table_rejects_duplicate_names_and_defaults(db, make_user):
    owner = await make_user("owner")
    owner_id = owner.id
    db.add(FeedDefinition(owner_id=owner_id, name="Music"))
    await db.commit()

    db.add(FeedDefinition(owner_id=owner_id, name="MUSIC"))
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()

    db.add(FeedDefinition(owner_id=owner_id, name="one", is_default=True))
    await db.commit()
    db.add(FeedDefinition(owner_id=owner_id, name="two", is_default=True))
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()

    # any number of non-default feeds
    db.add(FeedDefinition(owner_id=owner_id, name="three"))
    db.add(FeedDefinition(owner_id=owner_id, name="four"))
    await db.commit()


async def test_index_violation_surfaces_as_conflict(db, make_user, monkeypatch):
    owner = await make_user("owner")
    owner_id = owner.id
    await create_feed_definition(db, owner_id, FeedDefinitionCreate(name="Music"))

    # a concurrent writer saved the same name between the check and the insert
    async def name_is_free(*args, **kwargs):
        return None

    monkeypatch.setattr(feed_definition_module, "_ensure_name_available", name_is_free)
    with pytest.raises(ConflictError) as exc_info:
        await create_feed_definition(db, owner_id, FeedDefinitionCreate(name="music"))
    assert exc_info.value.error_code == "FEED_NAME_TAKEN"
    assert [feed.name for feed in await list_feed_definitions(db, owner_id)] == ["Music"]
