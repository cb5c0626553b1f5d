"""Shared fixtures for the crawler tests.

The reader endpoint is mocked with ``respx``: every request to ``r.jina.ai``
is answered from a ``{target_url: reply}`` mapping, where a reply is either the
page text, an ``httpx.Response``, or an exception class to raise.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterator, Union

import httpx
import pytest
import respx

import doc_crawler

Reply = Union[str, httpx.Response, type]


def target_of(request: httpx.Request) -> str:
    """Return the page URL a reader request was made for."""
    return request.url.path.lstrip("/")


def make_handler(pages: dict[str, Reply]) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        reply = pages.get(target_of(request))
        if reply is None:
            return httpx.Response(404, text="Not Found")
        if isinstance(reply, httpx.Response):
            return reply
        if isinstance(reply, type) and issubclass(reply, httpx.RequestError):
            raise reply("boom", request=request)
        return httpx.Response(200, text=reply)

    return handler


@pytest.fixture()
def site_logger() -> logging.LoggerAdapter:
    return doc_crawler.get_site_logger("test")


@pytest.fixture()
def reader() -> Iterator[Callable[[dict[str, Reply]], respx.Route]]:
    """Yield a function that installs a mocked reader serving *pages*."""
    with respx.mock(assert_all_called=False) as router:

        def install(pages: dict[str, Reply]) -> respx.Route:
            return router.get(host="r.jina.ai").mock(side_effect=make_handler(pages))

        yield install


@pytest.fixture(autouse=True)
def _reset_crawler_logger() -> Iterator[None]:
    yield
    logging.getLogger("doc_crawler").handlers.clear()
