#!/usr/bin/env python3
"""
Documentation-site crawler built on a text-extraction reader.

Every page is fetched through a reader endpoint (Jina Reader by default,
``https://r.jina.ai/<url>``) that returns the rendered page as plain text.
Absolute links found in that text are followed as long as they contain the
entry URL, until no new page is left. All pages are then concatenated into a
single ``_totalcrawl.txt``.

Behaviour
---------
- One ``<slug>.txt`` per page under ``<results_dir>/<slug(entry_url)>/``.
- A page whose file already exists is never fetched again; its links are read
  back from disk, so re-running an interrupted crawl resumes it.
- Pages are dispatched in rounds of up to 50 URLs, each round split into
  chunks. Chunk members are fetched concurrently; chunks run one after the
  other. Chunks hold 5 pages with an API key and 1 without.
- A failed fetch is logged and yields no links. It never aborts the crawl.

Scoping is a plain substring test against the entry URL. It can let in
unrelated hosts that happen to contain the entry URL, and it drops same-site
pages spelled differently (other scheme, ``www.`` prefix, ...).

Slugs turn hyphens into underscores too, so a page saved as
``docs.example.com_getting-started.txt`` by an older tool that kept hyphens
is not recognised as cached and is fetched again.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import itertools
import logging
import re
import sys
from pathlib import Path
from typing import Iterable, Optional

import httpx
import yaml


# --------------------------- Configuration --------------------------------- #


DEFAULT_ENDPOINT = "https://r.jina.ai"
DEFAULT_USER_AGENT = "DocCrawler/1.0 (+https://example.com/bot)"


@dataclasses.dataclass(frozen=True)
class Config:
    results_dir: str = "."
    endpoint: str = DEFAULT_ENDPOINT
    user_agent: str = DEFAULT_USER_AGENT
    timeout: int = 20  # seconds per request
    round_size: int = 50  # URLs taken from the frontier per round
    auth_batch_size: int = 5
    anon_batch_size: int = 1
    combined_filename: str = "_totalcrawl.txt"
    text_extension: str = ".txt"
    log_file: Optional[str] = None

    @staticmethod
    def from_yaml(path: Path) -> "Config":
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return Config(
            results_dir=data.get("results_dir", "."),
            endpoint=data.get("endpoint", DEFAULT_ENDPOINT),
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
            timeout=int(data.get("timeout", 20)),
            round_size=int(data.get("round_size", 50)),
            auth_batch_size=int(data.get("auth_batch_size", 5)),
            anon_batch_size=int(data.get("anon_batch_size", 1)),
            combined_filename=data.get("combined_filename", "_totalcrawl.txt"),
            text_extension=data.get("text_extension", ".txt"),
            log_file=data.get("log_file"),
        )


# ----------------------------- Utilities ----------------------------------- #


SCHEME_RE = re.compile(r"^https?://")
UNSAFE_CHARS_RE = re.compile(r"[^\w./]", re.ASCII)
LINK_RE = re.compile(r"https?://\S+")


def clean_url(url: str) -> str:
    """Drop the ``#fragment`` part of *url*, if any."""
    return url.split("#", 1)[0]


def slugify_url(url: str) -> str:
    """Turn *url* into a flat, filesystem-safe name.

    ``https://docs.example.com/guide#intro`` becomes ``docs.example.com_guide``.
    Anything other than letters, digits, ``_``, ``.`` and ``/`` becomes ``_``,
    then every ``/`` becomes ``_`` as well.
    """
    slug = SCHEME_RE.sub("", clean_url(url), count=1)
    slug = UNSAFE_CHARS_RE.sub("_", slug)
    return slug.replace("/", "_")


def page_filename(url: str, extension: str = ".txt") -> str:
    return f"{slugify_url(url)}{extension}"


def extract_links(text: str) -> list[str]:
    """Return every absolute http(s) URL in *text*, in order, duplicates kept.

    A link runs until the next whitespace character, so trailing punctuation
    and markdown brackets stay attached to it.
    """
    return LINK_RE.findall(text)


def build_headers(credential: Optional[str], user_agent: str = DEFAULT_USER_AGENT) -> dict[str, str]:
    headers = {"User-Agent": user_agent}
    if credential:
        headers["Authorization"] = f"Bearer {credential}"
    return headers


def batch_size_for(credential: Optional[str], cfg: Config) -> int:
    return cfg.auth_batch_size if credential else cfg.anon_batch_size


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


# ----------------------------- Logging ------------------------------------- #


LOG_FORMAT = "%(asctime)s %(levelname)s [%(site)s] %(message)s"


def setup_root_logger(log_file: Optional[Path] = None) -> None:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    root_logger = logging.getLogger("doc_crawler")
    root_logger.setLevel(logging.INFO)
    root_logger.handlers.clear()
    ch = logging.StreamHandler(stream=sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(formatter)
    root_logger.addHandler(ch)
    if log_file is not None:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.INFO)
        fh.setFormatter(formatter)
        root_logger.addHandler(fh)


def get_site_logger(site_slug: str) -> logging.LoggerAdapter:
    logger = logging.getLogger(f"doc_crawler.{site_slug}")
    logger.setLevel(logging.INFO)
    logger.propagate = True
    return logging.LoggerAdapter(logger, extra={"site": site_slug})


# ------------------------------ Page Fetcher ------------------------------- #


async def fetch_page(
    client: httpx.AsyncClient,
    url: str,
    output_dir: Path,
    *,
    headers: dict[str, str],
    logger: logging.LoggerAdapter,
    endpoint: str = DEFAULT_ENDPOINT,
    timeout: float = 20,
    extension: str = ".txt",
) -> list[str]:
    """Fetch *url* as plain text, save it and return the links it contains.

    An existing output file short-circuits the request: the links are read
    back from disk instead. Request failures are logged and give ``[]``;
    filesystem errors propagate.
    """
    path = output_dir / page_filename(url, extension)

    if path.exists():
        logger.info(f"Skipping {url} - already processed")
        return extract_links(path.read_text(encoding="utf-8"))

    reader_url = f"{endpoint.rstrip('/')}/{url}"
    try:
        logger.info(f"Fetching: {reader_url}")
        resp = await client.get(reader_url, headers=headers, timeout=timeout)
        resp.raise_for_status()
        text = resp.text
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.error(f"Error fetching {url}: {e}")
        return []

    path.write_text(text, encoding="utf-8")
    logger.info(f"Saved: {url} -> {path.name}")
    return extract_links(text)


# ----------------------------- Batch Scheduler ----------------------------- #


def chunked(items: list[str], size: int) -> Iterable[list[str]]:
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")
    for i in range(0, len(items), size):
        yield items[i : i + size]


async def run_batch(
    client: httpx.AsyncClient,
    urls: list[str],
    base_url: str,
    output_dir: Path,
    batch_size: int,
    *,
    headers: dict[str, str],
    logger: logging.LoggerAdapter,
    endpoint: str = DEFAULT_ENDPOINT,
    timeout: float = 20,
    extension: str = ".txt",
) -> set[str]:
    """Fetch *urls* chunk by chunk and collect the in-scope links they yield.

    Members of a chunk run concurrently; the next chunk starts once all of
    them are done. A link is in scope when it contains *base_url*.
    """
    found: set[str] = set()
    for chunk in chunked(urls, batch_size):
        results = await asyncio.gather(
            *(
                fetch_page(
                    client,
                    url,
                    output_dir,
                    headers=headers,
                    logger=logger,
                    endpoint=endpoint,
                    timeout=timeout,
                    extension=extension,
                )
                for url in chunk
            )
        )
        for links in results:
            found.update(link for link in links if base_url in link)
    return found


# ------------------------------ Frontier ----------------------------------- #


@dataclasses.dataclass
class Frontier:
    """Pending and dispatched URLs of one crawl, both in cleaned form.

    A URL moves from ``to_visit`` to ``visited`` the moment it is handed out,
    so the two sets never overlap.
    """

    to_visit: set[str] = dataclasses.field(default_factory=set)
    visited: set[str] = dataclasses.field(default_factory=set)

    @classmethod
    def seed(cls, entry_url: str) -> "Frontier":
        return cls(to_visit={clean_url(entry_url)})

    @property
    def pending(self) -> bool:
        return bool(self.to_visit)

    def __bool__(self) -> bool:
        return self.pending

    def next_round(self, limit: int = 50) -> list[str]:
        batch = list(itertools.islice(self.to_visit, limit))
        for url in batch:
            self.to_visit.discard(url)
            self.visited.add(url)
        return batch

    def absorb(self, links: Iterable[str]) -> int:
        added = 0
        for link in links:
            cleaned = clean_url(link)
            if cleaned in self.visited or cleaned in self.to_visit:
                continue
            self.to_visit.add(cleaned)
            added += 1
        return added


# ------------------------------ Aggregator --------------------------------- #


def concatenate_all(
    output_dir: Path,
    combined_name: str = "_totalcrawl.txt",
    extension: str = ".txt",
) -> Path:
    names = sorted(
        p.name
        for p in output_dir.iterdir()
        if p.is_file() and p.name.endswith(extension) and p.name != combined_name
    )
    entries = []
    for name in names:
        content = (output_dir / name).read_text(encoding="utf-8")
        entries.append(f"=== {name} ===\n\n{content}\n\n")
    combined = output_dir / combined_name
    combined.write_text("\n".join(entries), encoding="utf-8")
    return combined


# ------------------------------ Docs Crawler ------------------------------- #


class DocsCrawler:
    """Crawl a single documentation site through the reader endpoint."""

    def __init__(self, entry_url: str, cfg: Config, credential: Optional[str] = None) -> None:
        self.base_url = clean_url(entry_url)
        self.cfg = cfg
        self.site_slug = slugify_url(self.base_url)
        self.output_dir = Path(cfg.results_dir) / self.site_slug

        self.headers = build_headers(credential, cfg.user_agent)
        self.batch_size = batch_size_for(credential, cfg)
        self.authenticated = bool(credential)

        self.frontier = Frontier.seed(self.base_url)
        self.logger = get_site_logger(self.site_slug)

    async def run(self) -> Path:
        ensure_dir(self.output_dir)
        mode = "authenticated" if self.authenticated else "anonymous"
        self.logger.info(f"Starting crawl: {self.base_url} ({mode}, batch size {self.batch_size})")

        timeout = httpx.Timeout(self.cfg.timeout)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            await self.crawl(client)

        combined = concatenate_all(self.output_dir, self.cfg.combined_filename, self.cfg.text_extension)
        self.logger.info(
            f"Completed: {len(self.frontier.visited)} URL(s) visited. Combined output: {combined}"
        )
        return combined

    async def crawl(self, client: httpx.AsyncClient) -> None:
        rounds = 0
        while self.frontier:
            urls = self.frontier.next_round(self.cfg.round_size)
            rounds += 1
            self.logger.info(
                f"Round {rounds}: {len(urls)} URL(s), {len(self.frontier.to_visit)} still pending"
            )
            links = await run_batch(
                client,
                urls,
                self.base_url,
                self.output_dir,
                self.batch_size,
                headers=self.headers,
                logger=self.logger,
                endpoint=self.cfg.endpoint,
                timeout=self.cfg.timeout,
                extension=self.cfg.text_extension,
            )
            added = self.frontier.absorb(links)
            if added:
                self.logger.info(f"Queued {added} new URL(s)")


# ------------------------------- CLI --------------------------------------- #


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="doc-crawler",
        description="Crawl a documentation site to plain text through a reader endpoint.",
    )
    parser.add_argument("url", help="Docs entry URL; also the scope every followed link must contain.")
    parser.add_argument("api_key", nargs="?", default=None, help="Optional reader API key (enables batches of 5).")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Path to YAML configuration file.")
    return parser.parse_args(argv)


async def main_async(entry_url: str, cfg: Config, credential: Optional[str] = None) -> Path:
    crawler = DocsCrawler(entry_url, cfg, credential)
    return await crawler.run()


def main(argv: Optional[Iterable[str]] = None) -> None:
    args = parse_args(argv)
    cfg = Config.from_yaml(args.config) if args.config else Config()
    setup_root_logger(Path(cfg.log_file) if cfg.log_file else None)
    try:
        asyncio.run(main_async(clean_url(args.url), cfg, args.api_key))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
