import pytest

from conftest import FakeFetcher, keyword_page
from searchbot.crawler.analyzer import ContentAnalyzer
from searchbot.crawler.fetcher import FetchError
from searchbot.crawler.tasks import CrawlTask, PhraseHit, PhraseVerifyTask
from searchbot.crawler.worker import CrawlWorker


def _worker(database, pages, keyword_limit=10):
    return CrawlWorker(
        worker_id="worker-test",
        database=database,
        fetcher=FakeFetcher(pages),
        analyzer=ContentAnalyzer(keyword_limit=keyword_limit),
    )


async def test_crawl_persists_links_keywords_and_description(database):
    url = "http://site.test/1"
    await database.insert_url(url)
    html = keyword_page("robots", "search", body="robots crawl the web",
                        links=["/2", "http://other.test/"])
    worker = _worker(database, {url: html})

    assert await worker.crawl(CrawlTask(1)) is True

    assert await database.url_at_position(2) == "http://site.test/2"
    assert await database.url_at_position(3) == "http://other.test/"
    assert await database.description_count() == 1
    results = await database.search_keywords(["robots"])
    assert results == [{"url": url, "description": "robots search", "rank": 3}]


async def test_page_without_keywords_only_contributes_links(database):
    url = "http://site.test/1"
    await database.insert_url(url)
    html = '<html><body><p>hi</p><a href="/next">next</a></body></html>'
    worker = _worker(database, {url: html})

    assert await worker.crawl(CrawlTask(1)) is True

    assert await database.url_count() == 2
    assert await database.description_count() == 0
    assert (await database.get_stats())["keywords"] == 0


async def test_unknown_position_reports_failure(database):
    worker = _worker(database, {})

    assert await worker.crawl(CrawlTask(7)) is False
    assert worker.fetcher.fetched == []


async def test_fetch_failure_reports_failure(database):
    url = "http://site.test/1"
    await database.insert_url(url)
    worker = _worker(database, {url: FetchError(url, "HTTP 503", retryable=False)})

    assert await worker.crawl(CrawlTask(1)) is False
    assert await database.description_count() == 0


async def test_halted_worker_skips_persistence(database):
    url = "http://site.test/1"
    await database.insert_url(url)
    worker = _worker(database, {url: keyword_page("robots", links=["/2"])})
    worker.halt()

    assert await worker.crawl(CrawlTask(1)) is True

    assert worker.halted
    assert await database.url_count() == 1
    assert await database.description_count() == 0


async def test_end_to_end_heading_keywords(database):
    url = "http://home.test/"
    await database.insert_url(url)
    html = """
    <html><body>
      <h1>Welcome Home Page</h1>
      <p>Welcome to my home.</p>
    </body></html>
    """
    worker = _worker(database, {url: html}, keyword_limit=2)

    assert await worker.crawl(CrawlTask(1)) is True

    results = await database.search_keywords(["welcome"])
    assert results == [{"url": url, "description": "Welcome Home Page", "rank": 2}]
    results = await database.search_keywords(["home"])
    assert results[0]["rank"] == 2
    assert await database.search_keywords(["page"]) == []


@pytest.mark.parametrize("match_all, expected_rank", [(True, None), (False, 1)])
async def test_verify_ranks_phrase_occurrences(database, match_all, expected_rank):
    url = "http://site.test/greek"
    await database.insert_url(url)
    worker = _worker(database, {url: "<html><body><p>alpha is the first letter</p></body></html>"})

    hit = await worker.verify(PhraseVerifyTask(1, ("alpha", "beta"), match_all))

    if expected_rank is None:
        assert hit is None
    else:
        assert hit == PhraseHit(url=url, rank=expected_rank)


async def test_verify_sums_all_phrases(database):
    url = "http://site.test/greek"
    await database.insert_url(url)
    html = "<html><body><p>Alpha beta, alpha BETA gamma. Alphabet</p></body></html>"
    worker = _worker(database, {url: html})

    hit = await worker.verify(PhraseVerifyTask(1, ("alpha beta", "gamma"), True))

    assert hit == PhraseHit(url=url, rank=3)


async def test_verify_unavailable_page_is_none(database):
    url = "http://site.test/gone"
    await database.insert_url(url)
    worker = _worker(database, {url: FetchError(url, "timeout", retryable=False)})

    assert await worker.verify(PhraseVerifyTask(1, ("alpha",))) is None
    assert await worker.verify(PhraseVerifyTask(5, ("alpha",))) is None
