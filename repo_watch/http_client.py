# ETag-based conditional HTTP GET client and the GitHub feed fetcher on top.

# GitHub answers a repeated request whose ETag still matches with
# 304 Not Modified and no body, and 304s do not count against the rate limit.
# We keep the last body per URL and hand it back on 304, so callers always
# see a full feed; the diff engine then finds nothing new.

import asyncio
import itertools
import logging
from typing import Any, Protocol

import aiohttp

from repo_watch.config import API_BASE, FEED_PAGE_SIZE, REQUEST_TIMEOUT_SECONDS, RUNS_PAGE_SIZE
from repo_watch.errors import FetchError
from repo_watch.models import FeedEntry, FileChange, RunEntry
from repo_watch.parser import parse_events, parse_runs

log = logging.getLogger(__name__)


class ConditionalHTTPClient:
    """
    Wraps an aiohttp.ClientSession with ETag-based conditional GET support.

    One instance is shared by every watcher, with per-URL ETag state.
    Tokens, when several are configured, are used round-robin per request.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        tokens: tuple[str, ...] = (),
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._tokens = itertools.cycle(tokens) if tokens else None
        self._etags: dict[str, str] = {}     # url → last received ETag
        self._bodies: dict[str, Any] = {}    # url → body that ETag belongs to

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._tokens is not None:
            headers["Authorization"] = f"Bearer {next(self._tokens)}"
        return headers

    async def get_json(self, url: str, *, conditional: bool = True) -> Any:
        """
        GET `url` and return its decoded JSON body.

        With `conditional`, a 304 returns the body cached with the ETag.

        Raises:
            FetchError  on non-2xx / non-304 responses, connection errors
                        and timeouts
        """
        headers = self._headers()
        if conditional and url in self._etags:
            headers["If-None-Match"] = self._etags[url]

        try:
            async with self._session.get(url, headers=headers, timeout=self._timeout) as resp:
                if resp.status == 304 and url in self._bodies:
                    log.debug("304 Not Modified for %s", url)
                    return self._bodies[url]

                resp.raise_for_status()
                data = await resp.json(content_type=None)

                etag = resp.headers.get("ETag")
                if conditional and etag:
                    self._etags[url] = etag
                    self._bodies[url] = data
                return data

        except aiohttp.ClientResponseError as exc:
            log.warning("HTTP error fetching %s: %s %s", url, exc.status, exc.message)
            raise FetchError(url, f"HTTP {exc.status} {exc.message}", status=exc.status) from exc
        except asyncio.TimeoutError as exc:
            log.warning("Timeout fetching %s", url)
            raise FetchError(url, "timed out") from exc
        except aiohttp.ClientError as exc:
            log.warning("Connection error fetching %s: %s", url, exc)
            raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise FetchError(url, f"invalid JSON: {exc}") from exc


class FeedFetcher(Protocol):
    async def fetch_feed(self, repo: str) -> list[FeedEntry]: ...

    async def fetch_detail(self, repo: str, sha: str) -> list[FileChange]: ...

    async def fetch_runs(self, repo: str) -> list[RunEntry]: ...


class GitHubFetcher:
    """Feed, commit-detail and workflow-run retrieval for one GitHub API base."""

    def __init__(self, http: ConditionalHTTPClient, api_base: str = API_BASE) -> None:
        self._http = http
        self._api_base = api_base.rstrip("/")

    async def fetch_feed(self, repo: str) -> list[FeedEntry]:
        url = f"{self._api_base}/repos/{repo}/events?per_page={FEED_PAGE_SIZE}"
        data = await self._http.get_json(url)
        try:
            return parse_events(repo, data)
        except ValueError as exc:
            raise FetchError(url, str(exc)) from exc

    async def fetch_detail(self, repo: str, sha: str) -> list[FileChange]:
        url = f"{self._api_base}/repos/{repo}/commits/{sha}"
        data = await self._http.get_json(url, conditional=False)
        files = data.get("files") if isinstance(data, dict) else None
        if not isinstance(files, list):
            return []
        try:
            return [
                FileChange(
                    filename=str(f.get("filename") or ""),
                    status=str(f.get("status") or ""),
                    additions=int(f.get("additions") or 0),
                    deletions=int(f.get("deletions") or 0),
                    patch=f.get("patch") or None,
                )
                for f in files
                if isinstance(f, dict)
            ]
        except (TypeError, ValueError) as exc:
            raise FetchError(url, f"malformed commit detail: {exc}") from exc

    async def fetch_runs(self, repo: str) -> list[RunEntry]:
        url = f"{self._api_base}/repos/{repo}/actions/runs?per_page={RUNS_PAGE_SIZE}"
        data = await self._http.get_json(url)
        try:
            return parse_runs(data)
        except ValueError as exc:
            raise FetchError(url, str(exc)) from exc
