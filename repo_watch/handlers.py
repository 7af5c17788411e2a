# delivery handlers: the output layer of the pipeline.

# each handler receives an artifact (or a text fallback) for one destination
# and is responsible for getting it there. Failures are raised as
# DeliveryFailure; the dispatcher contains them per destination.

# to add a new output target, implement a class with:
#     async def deliver(self, destination: str, artifact: Artifact) -> None: ...
#     async def deliver_text(self, destination: str, text: str) -> None: ...
# and hand it to BatchDispatcher in orchestrator.py.

import asyncio
import logging
from datetime import datetime, timezone
from typing import Protocol

import aiohttp

from repo_watch.config import REQUEST_TIMEOUT_SECONDS
from repo_watch.errors import DeliveryFailure
from repo_watch.models import Artifact, ContentKind

log = logging.getLogger(__name__)

# ─── Kind colour map (ANSI) ─────────

_R = "\033[0m"   # reset

_KIND_COLOR: dict[ContentKind, str] = {
    ContentKind.COMMITS:  "\033[32m",   # green
    ContentKind.ISSUES:   "\033[35m",   # magenta
    ContentKind.PULLS:    "\033[33m",   # yellow
    ContentKind.COMMENTS: "\033[34m",   # blue
    ContentKind.ACTIONS:  "\033[36m",   # cyan
}


def _ts() -> str:
    """ISO 8601 UTC timestamp, e.g. 2026-02-21T12:39:08Z"""
    return datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _color_kind(kind: ContentKind) -> str:
    c = _KIND_COLOR.get(kind, "")
    return f"{c}{kind.value.upper()}{_R}" if c else kind.value.upper()


class Delivery(Protocol):
    async def deliver(self, destination: str, artifact: Artifact) -> None: ...

    async def deliver_text(self, destination: str, text: str) -> None: ...


class ConsoleDelivery:
    """
    Prints each delivery to stdout.

    Format:
        [2026-02-21T12:39:08Z] -> 12345 | COMMITS | owner/repo
        <artifact text, or a note for binary artifacts>
    """

    async def deliver(self, destination: str, artifact: Artifact) -> None:
        if artifact.media_type.startswith("text/"):
            body = artifact.data
        else:
            body = f"<{artifact.media_type}, {len(artifact.data)} bytes>"
        print(f"[{_ts()}] -> {destination} | {_color_kind(artifact.kind)} | {artifact.repo}\n{body}", flush=True)

    async def deliver_text(self, destination: str, text: str) -> None:
        print(f"[{_ts()}] -> {destination} | TEXT\n{text}", flush=True)


class WebhookDelivery:
    """
    POSTs one JSON message per destination to a bot webhook.

    Message shape:
        {"destination": "<id>", "type": "image", "data": "<base64>"}
        {"destination": "<id>", "type": "text", "data": "<text>"}
    """

    def __init__(self, session: aiohttp.ClientSession, url: str) -> None:
        self._session = session
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)

    async def _post(self, destination: str, message: dict[str, str]) -> None:
        try:
            async with self._session.post(self._url, json=message, timeout=self._timeout) as resp:
                resp.raise_for_status()
        except aiohttp.ClientResponseError as exc:
            raise DeliveryFailure(destination, f"HTTP {exc.status} {exc.message}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeliveryFailure(destination, f"{type(exc).__name__}: {exc}") from exc

    async def deliver(self, destination: str, artifact: Artifact) -> None:
        kind = "image" if artifact.media_type.startswith("image/") else "text"
        await self._post(destination, {"destination": destination, "type": kind, "data": artifact.data})

    async def deliver_text(self, destination: str, text: str) -> None:
        await self._post(destination, {"destination": destination, "type": "text", "data": text})
