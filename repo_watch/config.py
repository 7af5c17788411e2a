import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from repo_watch.models import SUBSCRIBABLE_KINDS, ContentKind, WatchTarget

log = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS: int = 30
MIN_POLL_INTERVAL_SECONDS: int = 5
REQUEST_TIMEOUT_SECONDS: int = 10
RENDER_TIMEOUT_SECONDS: int = 30
GAP_RECOVERY_CAP: int = 10          # entries replayed when the cursor fell out of the feed window
DETAIL_CONCURRENCY: int = 4         # parallel commit-detail fetches inside one batch
MAX_CONCURRENT_TARGETS: int = 1     # 1 = targets processed sequentially
FEED_PAGE_SIZE: int = 30
RUNS_PAGE_SIZE: int = 20
DEFAULT_BRANCH: str = "main"
DEFAULT_SQLITE_PATH: str = "./repo_watch_state.sqlite3"
API_BASE: str = "https://api.github.com"
USER_AGENT: str = "RepoWatch/1.0 (github-subscription)"

DEFAULT_KINDS: frozenset[ContentKind] = frozenset({ContentKind.COMMITS, ContentKind.ISSUES, ContentKind.PULLS})


def _require_dict(value: Any, *, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value).__name__}")
    return value


def _get_int(d: dict[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _get_str_list(d: dict[str, Any], key: str) -> list[str]:
    v = d.get(key)
    if not isinstance(v, list):
        return []
    return [str(x).strip() for x in v if str(x).strip()]


def clamp_interval(seconds: int) -> int:
    return max(seconds or POLL_INTERVAL_SECONDS, MIN_POLL_INTERVAL_SECONDS)


@dataclass(frozen=True)
class Settings:
    """
    Everything the monitor needs to run, loaded once at start-up.

    interval_seconds is already clamped to MIN_POLL_INTERVAL_SECONDS.
    """

    interval_seconds: int = POLL_INTERVAL_SECONDS
    debug: bool = False
    api_base: str = API_BASE
    tokens: tuple[str, ...] = ()
    gap_recovery_cap: int = GAP_RECOVERY_CAP
    detail_concurrency: int = DETAIL_CONCURRENCY
    max_concurrent_targets: int = MAX_CONCURRENT_TARGETS
    request_timeout_seconds: int = REQUEST_TIMEOUT_SECONDS
    sqlite_path: str = DEFAULT_SQLITE_PATH
    render_url: str | None = None
    theme: str = "light"
    webhook_url: str | None = None
    subscriptions: tuple[WatchTarget, ...] = field(default_factory=tuple)

    def active_targets(self) -> list[WatchTarget]:
        return [t for t in self.subscriptions if t.is_active]


def parse_kinds(raw: list[str]) -> frozenset[ContentKind]:
    kinds = set()
    for name in raw:
        try:
            kind = ContentKind(name.lower())
        except ValueError:
            log.warning("Ignoring unknown subscription type %r", name)
            continue
        if kind in SUBSCRIBABLE_KINDS:
            kinds.add(kind)
    return frozenset(kinds)


def parse_subscription(raw: Any, *, where: str) -> WatchTarget:
    sub = _require_dict(raw, where=where)
    repo = str(sub.get("repo") or "").strip().lower()
    if "/" not in repo:
        raise ValueError(f"{where}.repo must look like owner/repo, got {repo!r}")

    types = _get_str_list(sub, "types")
    kinds = parse_kinds(types) if "types" in sub else DEFAULT_KINDS

    return WatchTarget(
        repo=repo,
        branch=str(sub.get("branch") or DEFAULT_BRANCH),
        kinds=kinds,
        destinations=tuple(_get_str_list(sub, "groups")),
        enabled=bool(sub.get("enabled", True)),
    )


def load_settings(config_path: str) -> Settings:
    """
    Load settings from a JSON file.

    Top-level shape:
    {
      "interval": 30,
      "debug": false,
      "api_base": "https://api.github.com",
      "tokens": ["ghp_..."],
      "token_env": "GITHUB_TOKEN",
      "gap_recovery_cap": 10,
      "state": {"sqlite_path": "./repo_watch_state.sqlite3"},
      "render": {"url": "http://127.0.0.1:6099/render", "theme": "dark"},
      "delivery": {"webhook_url": "http://127.0.0.1:3000/send"},
      "subscriptions": [
        {"repo": "owner/repo", "branch": "main", "types": ["commits", "issues"], "groups": ["123"]}
      ]
    }
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))

    root = _require_dict(raw, where="$")

    tokens = _get_str_list(root, "tokens")
    token_env = root.get("token_env")
    if token_env:
        env_token = os.environ.get(str(token_env), "").strip()
        if env_token and env_token not in tokens:
            tokens.append(env_token)

    state = _require_dict(root.get("state", {}), where="$.state")
    render = _require_dict(root.get("render", {}), where="$.render")
    delivery = _require_dict(root.get("delivery", {}), where="$.delivery")

    subs_raw = root.get("subscriptions", [])
    if not isinstance(subs_raw, list):
        raise ValueError("Expected list at $.subscriptions")
    subscriptions = tuple(
        parse_subscription(s, where=f"$.subscriptions[{i}]") for i, s in enumerate(subs_raw)
    )

    seen: set[str] = set()
    for target in subscriptions:
        if target.repo in seen:
            raise ValueError(f"Duplicate subscription for {target.repo}")
        seen.add(target.repo)

    interval = _get_int(root, "interval", POLL_INTERVAL_SECONDS)
    if interval < MIN_POLL_INTERVAL_SECONDS:
        log.warning("interval=%ds is below the %ds floor, clamping", interval, MIN_POLL_INTERVAL_SECONDS)

    return Settings(
        interval_seconds=clamp_interval(interval),
        debug=bool(root.get("debug", False)),
        api_base=str(root.get("api_base") or API_BASE).rstrip("/"),
        tokens=tuple(tokens),
        gap_recovery_cap=max(_get_int(root, "gap_recovery_cap", GAP_RECOVERY_CAP), 1),
        detail_concurrency=max(_get_int(root, "detail_concurrency", DETAIL_CONCURRENCY), 1),
        max_concurrent_targets=max(_get_int(root, "max_concurrent_targets", MAX_CONCURRENT_TARGETS), 1),
        request_timeout_seconds=max(_get_int(root, "request_timeout", REQUEST_TIMEOUT_SECONDS), 1),
        sqlite_path=str(state.get("sqlite_path") or DEFAULT_SQLITE_PATH),
        render_url=render.get("url") or None,
        theme=str(render.get("theme") or "light"),
        webhook_url=delivery.get("webhook_url") or None,
        subscriptions=subscriptions,
    )
