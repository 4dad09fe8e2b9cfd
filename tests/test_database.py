import asyncio

import pytest

from searchbot.crawler.url_frontier import URLFrontier
from searchbot.storage.database import DatabaseManager, NotFoundError
from searchbot.utils.config import DatabaseConfig


async def test_concurrent_inserts_of_same_url_share_one_position(database):
    frontier = URLFrontier(database)

    positions = await asyncio.gather(
        *(frontier.insert_if_absent("http://site.test/") for _ in range(25))
    )

    assert set(positions) == {1}
    assert await frontier.count() == 1


async def test_positions_are_gap_free_in_insertion_order(database):
    frontier = URLFrontier(database)
    urls = ["http://a.test/", "http://b.test/", "http://a.test/", "http://c.test/",
            "http://b.test/", "http://d.test/"]

    positions = [await frontier.insert_if_absent(url) for url in urls]

    assert positions == [1, 2, 1, 3, 2, 4]
    assert await frontier.count() == 4
    for position, url in enumerate(["http://a.test/", "http://b.test/",
                                    "http://c.test/", "http://d.test/"], start=1):
        assert await frontier.url_at_position(position) == url


async def test_position_beyond_frontier_is_not_found(database):
    await database.insert_url("http://a.test/")

    with pytest.raises(NotFoundError) as excinfo:
        await database.url_at_position(2)

    assert excinfo.value.position == 2


async def test_reset_restarts_positions(tmp_path):
    config = DatabaseConfig(path=str(tmp_path / "reset.db"))
    db = DatabaseManager(config)
    await db.initialize()
    await db.insert_url("http://a.test/")
    await db.insert_url("http://b.test/")
    await db.upsert_description("http://a.test/", "A")
    await db.close()

    db = DatabaseManager(config)
    await db.initialize()
    try:
        assert await db.url_count() == 0
        assert await db.description_count() == 0
        assert await db.insert_url("http://c.test/") == 1
    finally:
        await db.close()


async def test_keyword_rank_is_overwritten(database):
    await database.upsert_keywords("http://a.test/", ["cat", "dog"], [3, 1])
    await database.upsert_keywords("http://a.test/", ["cat"], [7])
    await database.upsert_description("http://a.test/", "pets")

    results = await database.search_keywords(["cat"])

    assert results == [{"url": "http://a.test/", "description": "pets", "rank": 7}]


async def test_description_last_write_wins(database):
    await database.upsert_description("http://a.test/", "first")
    await database.upsert_description("http://a.test/", "second")

    assert await database.descriptions_for(["http://a.test/"]) == {"http://a.test/": "second"}
    assert await database.description_count() == 1


async def _index(database, url, ranks, description=""):
    await database.upsert_keywords(url, list(ranks), list(ranks.values()))
    await database.upsert_description(url, description or url)


async def test_or_search_sums_ranks_and_orders_descending(database):
    await _index(database, "http://a.test/", {"cat": 2, "dog": 1})
    await _index(database, "http://b.test/", {"cat": 5})
    await _index(database, "http://c.test/", {"fish": 9})

    results = await database.search_keywords(["cat", "dog"], match_all=False)

    assert [(row["url"], row["rank"]) for row in results] == [
        ("http://b.test/", 5),
        ("http://a.test/", 3),
    ]


async def test_and_search_requires_every_term(database):
    await _index(database, "http://a.test/", {"cat": 2, "dog": 1})
    await _index(database, "http://b.test/", {"cat": 5})

    results = await database.search_keywords(["cat", "dog"], match_all=True)

    assert [(row["url"], row["rank"]) for row in results] == [("http://a.test/", 3)]


async def test_search_uses_substring_matching(database):
    await _index(database, "http://a.test/", {"catalog": 4})

    results = await database.search_keywords(["cat"])

    assert [row["url"] for row in results] == ["http://a.test/"]


async def test_like_wildcards_in_terms_match_literally(database):
    await _index(database, "http://a.test/", {"100%": 1})
    await _index(database, "http://b.test/", {"1000": 1})

    results = await database.search_keywords(["100%"])

    assert [row["url"] for row in results] == ["http://a.test/"]


async def test_keywords_without_description_are_not_returned(database):
    await database.upsert_keywords("http://a.test/", ["cat"], [1])

    assert await database.search_keywords(["cat"]) == []


async def test_empty_terms_return_empty(database):
    assert await database.search_keywords([]) == []


async def test_positions_matching_url_substring(database):
    for url in ["http://news.test/a", "http://shop.test/b", "http://news.test/c"]:
        await database.insert_url(url)

    assert await database.positions_matching("news") == [1, 3]
    assert await database.positions_matching("nothing") == []
