import pytest
from sqlalchemy.dialects import postgresql

from djsite.db import async_database_url
from djsite.models import TABLE_MODELS
from djsite.services.gateway import DatabaseGateway, GatewayError, InMemoryGateway, Query
from tests.helpers import run


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


def test_insert_fills_defaults_and_timestamps(gateway: InMemoryGateway) -> None:
    row = run(gateway.insert("videos", {"title": "Warmup", "url": "https://youtu.be/x"}))

    assert row["id"]
    assert row["video_type"] == "upload"
    assert row["is_featured"] is False
    assert row["is_published"] is True
    assert row["created_at"] == row["updated_at"]


def test_contact_messages_have_no_updated_at(gateway: InMemoryGateway) -> None:
    row = run(
        gateway.insert(
            "contact_messages", {"name": "Ana", "email": "ana@example.com", "message": "Hi"}
        )
    )

    assert "updated_at" not in row
    assert row["is_read"] is False


def test_select_filters_orders_and_limits(gateway: InMemoryGateway) -> None:
    async def scenario():
        for order, published in [(3, True), (1, True), (2, False), (None, True)]:
            await gateway.insert(
                "photos",
                {
                    "url": f"u{order}",
                    "storage_path": f"photos/{order}",
                    "display_order": order,
                    "is_published": published,
                },
            )
        return await gateway.select(
            Query("photos").where(is_published=True).order("display_order").limit(3)
        )

    rows = run(scenario())

    assert [row["display_order"] for row in rows] == [1, 3, None]


def test_multiple_sort_keys(gateway: InMemoryGateway) -> None:
    async def scenario():
        await gateway.insert("videos", {"title": "a", "url": "a", "display_order": 2})
        await gateway.insert("videos", {"title": "b", "url": "b", "display_order": 1})
        await gateway.insert(
            "videos", {"title": "c", "url": "c", "display_order": 3, "is_featured": True}
        )
        return await gateway.select(
            Query("videos").order("is_featured", descending=True).order("display_order")
        )

    rows = run(scenario())

    assert [row["title"] for row in rows] == ["c", "b", "a"]


def test_returned_rows_are_copies(gateway: InMemoryGateway) -> None:
    row = run(gateway.insert("albums", {"title": "Tour"}))
    row["title"] = "Mutated"

    stored = run(gateway.select(Query("albums")))

    assert stored[0]["title"] == "Tour"


def test_update_and_update_where(gateway: InMemoryGateway) -> None:
    async def scenario():
        first = await gateway.insert(
            "contact_messages", {"name": "A", "email": "a@x.io", "message": "m"}
        )
        await gateway.insert("contact_messages", {"name": "B", "email": "b@x.io", "message": "m"})
        updated = await gateway.update("contact_messages", first["id"], {"is_archived": True})
        changed = await gateway.update_where(
            "contact_messages", {"is_read": False}, {"is_read": True}
        )
        missing = await gateway.update("contact_messages", "nope", {"is_read": True})
        return updated, changed, missing

    updated, changed, missing = run(scenario())

    assert updated["is_archived"] is True
    assert changed == 2
    assert missing is None


def test_upsert_on_conflict_column(gateway: InMemoryGateway) -> None:
    async def scenario():
        await gateway.upsert(
            "site_settings", {"key": "site_name", "value": "One"}, conflict_column="key"
        )
        await gateway.upsert(
            "site_settings", {"key": "site_name", "value": "Two"}, conflict_column="key"
        )
        return await gateway.select(Query("site_settings"))

    rows = run(scenario())

    assert len(rows) == 1
    assert rows[0]["value"] == "Two"


def test_album_delete_cascades_to_photos(gateway: InMemoryGateway) -> None:
    async def scenario():
        album = await gateway.insert("albums", {"title": "Tour"})
        await gateway.insert(
            "photos", {"url": "u1", "storage_path": "photos/1", "album_id": album["id"]}
        )
        await gateway.insert("photos", {"url": "u2", "storage_path": "photos/2"})
        assert await gateway.delete("albums", album["id"]) is True
        return await gateway.select(Query("photos"))

    rows = run(scenario())

    assert [row["url"] for row in rows] == ["u2"]


def test_delete_many_counts_removed_rows(gateway: InMemoryGateway) -> None:
    async def scenario():
        ids = [
            (await gateway.insert("events", {"title": f"e{index}", "event_date": "2030-01-01"}))["id"]
            for index in range(3)
        ]
        return await gateway.delete_many("events", ids[:2] + ["missing"])

    assert run(scenario()) == 2


def test_set_exclusive_flag_leaves_one_row_flagged(gateway: InMemoryGateway) -> None:
    async def scenario():
        ids = [
            (await gateway.insert("videos", {"title": t, "url": t, "is_featured": t == "a"}))["id"]
            for t in ("a", "b", "c")
        ]
        await gateway.set_exclusive_flag("videos", "is_featured", ids[1])
        return ids, await gateway.select(Query("videos").where(is_featured=True))

    ids, featured = run(scenario())

    assert [row["id"] for row in featured] == [ids[1]]


def test_count_with_filters(gateway: InMemoryGateway) -> None:
    async def scenario():
        await gateway.insert("contact_messages", {"name": "A", "email": "a@x.io", "message": "m"})
        await gateway.insert(
            "contact_messages", {"name": "B", "email": "b@x.io", "message": "m", "is_read": True}
        )
        return (
            await gateway.count("contact_messages"),
            await gateway.count("contact_messages", {"is_read": False}),
        )

    assert run(scenario()) == (2, 1)


def test_unknown_table_is_a_gateway_error(gateway: InMemoryGateway) -> None:
    with pytest.raises(GatewayError):
        run(gateway.select(Query("users")))


def test_database_filters_on_malformed_uuid_match_nothing() -> None:
    table = TABLE_MODELS["albums"].__table__

    conditions = DatabaseGateway._conditions(table, {"id": "missing", "title": "Tour"})
    compiled = [str(condition.compile(dialect=postgresql.dialect())) for condition in conditions]

    assert compiled[0] == "false"
    assert compiled[1].startswith("albums.title = ")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("postgres://u:p@db:5432/site", "postgresql+asyncpg://u:p@db:5432/site"),
        ("postgresql+psycopg2://u:p@db/site", "postgresql+asyncpg://u:p@db/site"),
        ("postgresql+asyncpg://u:p@db/site", "postgresql+asyncpg://u:p@db/site"),
        ("sqlite+aiosqlite:///site.db", "sqlite+aiosqlite:///site.db"),
    ],
)
def test_database_url_uses_async_driver(raw: str, expected: str) -> None:
    assert async_database_url(raw) == expected
