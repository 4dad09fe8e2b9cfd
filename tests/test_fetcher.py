import pytest
from aiohttp import web

from conftest import make_crawler_config
from searchbot.crawler.fetcher import BrowserFetcher, FetchError, WebFetcher, create_fetcher


def _flaky_app(failures_before_success):
    calls = {'count': 0}

    async def flaky(request):
        calls['count'] += 1
        if calls['count'] <= failures_before_success:
            return web.Response(status=500, text="try again")
        return web.Response(text="<html><title>ok</title></html>", content_type="text/html")

    async def missing(request):
        calls['count'] += 1
        return web.Response(status=404, text="gone")

    async def image(request):
        return web.Response(body=b"\x89PNG", content_type="image/png")

    app = web.Application()
    app.router.add_get('/flaky', flaky)
    app.router.add_get('/missing', missing)
    app.router.add_get('/image', image)
    return app, calls


async def test_server_errors_are_retried(client_factory):
    app, calls = _flaky_app(failures_before_success=2)
    client = await client_factory(app)

    async with WebFetcher("test-agent", retry_attempts=3, retry_backoff_max=0) as fetcher:
        html = await fetcher.fetch(str(client.make_url('/flaky')))
        stats = fetcher.get_stats()

    assert "<title>ok</title>" in html
    assert calls['count'] == 3
    assert stats['successful_requests'] == 1
    assert stats['total_requests'] == 3


async def test_retries_are_bounded(client_factory):
    app, calls = _flaky_app(failures_before_success=10)
    client = await client_factory(app)

    async with WebFetcher("test-agent", retry_attempts=2, retry_backoff_max=0) as fetcher:
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(str(client.make_url('/flaky')))

    assert excinfo.value.reason == "HTTP 500"
    assert calls['count'] == 2


async def test_client_errors_are_not_retried(client_factory):
    app, calls = _flaky_app(failures_before_success=0)
    client = await client_factory(app)

    async with WebFetcher("test-agent", retry_attempts=3, retry_backoff_max=0) as fetcher:
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(str(client.make_url('/missing')))

    assert not excinfo.value.retryable
    assert calls['count'] == 1


async def test_non_text_content_is_rejected(client_factory):
    app, _ = _flaky_app(failures_before_success=0)
    client = await client_factory(app)

    async with WebFetcher("test-agent", retry_attempts=1, retry_backoff_max=0) as fetcher:
        with pytest.raises(FetchError, match="Non-text"):
            await fetcher.fetch(str(client.make_url('/image')))


async def test_unreachable_host_is_a_fetch_error():
    async with WebFetcher("test-agent", request_timeout=1, retry_attempts=1,
                          retry_backoff_max=0) as fetcher:
        with pytest.raises(FetchError):
            await fetcher.fetch("http://127.0.0.1:9/")


def test_renderer_selects_fetcher():
    assert isinstance(create_fetcher(make_crawler_config()), WebFetcher)
    assert isinstance(create_fetcher(make_crawler_config(renderer='browser')), BrowserFetcher)
