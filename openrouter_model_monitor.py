#!/usr/bin/env python3
"""OpenRouter Model Monitor - Slack notification bot for newly listed models.

Polls the OpenRouter model catalog, compares the current model IDs against
the baseline saved by the previous run, and posts a Slack message listing
every model that appeared since then.

Designed to be invoked repeatedly by cron or a CI schedule; each invocation
performs exactly one poll-diff-notify cycle and exits.  The very first run
only records a baseline and sends nothing, so the whole catalog is never
announced at once.

Usage (example cron, runs every 15 minutes):
    */15 * * * * cd /path/to/monitor && openrouter-model-monitor
"""

from __future__ import annotations

import argparse
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterable, Iterator, Mapping

import requests
from dotenv import load_dotenv

# ============================================================
# Logging
# ============================================================
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
log = logging.getLogger("openrouter_model_monitor")

# ============================================================
# Constants
# ============================================================
OPENROUTER_MODELS_URL = "https://openrouter.ai/api/v1/models"
OPENROUTER_MODEL_PAGE_BASE_URL = "https://openrouter.ai/models"
DEFAULT_STATE_FILE = ".openrouter_models_last.txt"
DEFAULT_STATE_MODE = 0o644
REQUEST_TIMEOUT = 15
USER_AGENT = "OpenRouterModelMonitor/1.0"
MESSAGE_HEADER = "New OpenRouter model(s) detected:"

# Slug values the catalog uses to mean "no slug"
_NULL_SLUGS = frozenset({"", "null"})
_SLUG_UNSAFE = re.compile(r"[^a-z0-9_.-]")

STATUS_INITIALIZED = "initialized"
STATUS_UNCHANGED = "unchanged"
STATUS_NOTIFIED = "notified"


# ============================================================
# Errors
# ============================================================
class MonitorError(Exception):
    """Base class for every failure a monitor run can report."""


class FetchError(MonitorError):
    """The catalog could not be retrieved (network, timeout, HTTP status)."""


class ParseError(MonitorError):
    """The catalog was retrieved but yielded no usable model IDs."""


class StorageError(MonitorError):
    """The baseline file exists but could not be read, or could not be written."""


class NotifyError(MonitorError):
    """The notification could not be delivered."""


# ============================================================
# Identifier Sets
# ============================================================
def is_valid_identifier(value: object) -> bool:
    """Return *True* if *value* can be stored as exactly one baseline line.

    IDs are opaque and never normalized: surrounding whitespace is rejected
    rather than stripped.  The baseline is split on ``"\\n"`` only, so other
    Unicode line boundaries such as ``\\u2028`` are ordinary characters here.
    """
    if not isinstance(value, str) or not value:
        return False
    if value != value.strip():
        return False
    return "\n" not in value and "\r" not in value


@dataclass(frozen=True)
class IdentifierSet:
    """Immutable set of model IDs, always iterated in ascending order."""

    ids: frozenset[str] = frozenset()

    @classmethod
    def of(cls, values: Iterable[str]) -> IdentifierSet:
        cleaned: set[str] = set()
        for value in values:
            if not is_valid_identifier(value):
                raise ValueError(f"invalid identifier {value!r}")
            cleaned.add(value)
        return cls(frozenset(cleaned))

    def sorted(self) -> list[str]:
        return sorted(self.ids)

    def difference(self, other: IdentifierSet) -> IdentifierSet:
        return IdentifierSet(self.ids - other.ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self.sorted())

    def __len__(self) -> int:
        return len(self.ids)

    def __contains__(self, item: object) -> bool:
        return item in self.ids


# ============================================================
# Baseline Persistence
# ============================================================
class BaselineStore:
    """Newline-delimited, sorted baseline file with atomic replacement."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> IdentifierSet | None:
        """Return the stored IDs, or *None* if no baseline file exists yet.

        A file that exists but cannot be read raises :class:`StorageError`.
        An empty file yields an empty set; deciding what that means is left
        to the caller.
        """
        if not self.path.exists():
            log.info("No baseline at %s – this will be a seed run", self.path)
            return None
        try:
            with self.path.open("r", encoding="utf-8", newline="") as f:
                text = f.read()
            # Split only on "\n", the separator save() writes
            lines = (line[:-1] if line.endswith("\r") else line for line in text.split("\n"))
            return IdentifierSet.of(line for line in lines if line.strip())
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            raise StorageError(f"Cannot read baseline {self.path}: {exc}") from exc

    def save(self, ids: IdentifierSet) -> None:
        """Write *ids* to disk so that readers never see a partial file.

        An existing baseline keeps its permission bits; a new one is
        created with mode 0644.
        """
        payload = "".join(f"{i}\n" for i in ids.sorted())
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            dir_path = str(self.path.parent)
            mode = self.path.stat().st_mode & 0o777 if self.path.exists() else DEFAULT_STATE_MODE
            fd, tmp = tempfile.mkstemp(dir=dir_path, prefix=f".{self.path.name}.", suffix=".tmp")
        except OSError as exc:
            raise StorageError(f"Cannot write baseline {self.path}: {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, self.path)
        except OSError as exc:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise StorageError(f"Cannot write baseline {self.path}: {exc}") from exc

        # The new baseline is in place; only its durability is in question now
        try:
            _fsync_dir(dir_path)
        except OSError as exc:
            log.warning("Could not sync directory %s after saving baseline: %s", dir_path, exc)
        log.info("Saved baseline with %d model IDs to %s", len(ids), self.path)


def _fsync_dir(dir_path: str) -> None:
    """Flush directory metadata so the rename survives a power loss."""
    if os.name != "posix":
        return
    dir_fd = os.open(dir_path, os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


# ============================================================
# Reconciliation
# ============================================================
def reconcile(current: IdentifierSet, previous: IdentifierSet) -> IdentifierSet:
    """Return the IDs present in *current* but absent from *previous*."""
    return current.difference(previous)


# ============================================================
# Catalog Fetching / Parsing
# ============================================================
def fetch_catalog(url: str, *, timeout: float = REQUEST_TIMEOUT) -> dict[str, Any]:
    """GET the catalog at *url* once and return the decoded JSON document."""
    try:
        resp = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(f"Failed to fetch models from {url}: {exc}") from exc

    try:
        return resp.json()
    except ValueError as exc:
        raise ParseError(f"Catalog response from {url} is not valid JSON: {exc}") from exc


def catalog_records(document: Any) -> list[Any]:
    """Return the raw record list of a catalog document.

    Raises :class:`ParseError` when the document does not have the expected
    ``{"data": [...]}`` shape, so that a broken payload is never mistaken for
    an empty catalog.
    """
    if not isinstance(document, dict):
        raise ParseError(f"Catalog document is a {type(document).__name__}, expected an object")
    records = document.get("data")
    if not isinstance(records, list):
        raise ParseError("Catalog document has no 'data' list")
    return records


def _record_id(record: Any) -> str | None:
    if not isinstance(record, dict):
        return None
    mid = record.get("id")
    if not isinstance(mid, str):
        return None
    if not is_valid_identifier(mid):
        return None
    return mid


def extract_identifiers(document: Any) -> IdentifierSet:
    """Collect every usable model ID from *document*."""
    ids: list[str] = []
    for record in catalog_records(document):
        mid = _record_id(record)
        if mid is None:
            log.debug("Skipping catalog record without a usable id: %r", record)
            continue
        ids.append(mid)
    return IdentifierSet.of(ids)


# ============================================================
# Metadata Resolution
# ============================================================
@dataclass(frozen=True)
class ModelRecord:
    identifier: str
    display_name: str
    slug: str


def derive_slug(identifier: str) -> str:
    """Build a URL-safe slug: lowercase, anything outside ``[a-z0-9_.-]`` -> ``-``."""
    return _SLUG_UNSAFE.sub("-", identifier.lower())


def _fallback_record(identifier: str) -> ModelRecord:
    return ModelRecord(identifier, identifier, derive_slug(identifier))


def resolve_metadata(
    document: Any,
    identifiers: IdentifierSet | None = None,
) -> Mapping[str, ModelRecord]:
    """Map each model ID in *document* to its display name and slug.

    Missing or blank names fall back to the ID; missing, blank or ``"null"``
    slugs fall back to :func:`derive_slug`.  Records without an ID are
    skipped rather than failing the run.  Every ID in *identifiers* is
    guaranteed an entry, using fallback values if no record described it.

    The returned mapping is read-only.
    """
    resolved: dict[str, ModelRecord] = {}
    for record in catalog_records(document):
        mid = _record_id(record)
        if mid is None:
            continue

        name = record.get("name")
        display = name.strip() if isinstance(name, str) and name.strip() else mid

        slug = record.get("slug")
        if isinstance(slug, str) and slug.strip() not in _NULL_SLUGS:
            slug = slug.strip()
        else:
            slug = derive_slug(mid)

        resolved[mid] = ModelRecord(mid, display, slug)

    for mid in identifiers or ():
        if mid not in resolved:
            log.debug("No catalog metadata for %s – using fallback values", mid)
            resolved[mid] = _fallback_record(mid)

    return MappingProxyType(resolved)


# ============================================================
# Notification Composition
# ============================================================
@dataclass(frozen=True)
class NotificationMessage:
    lines: tuple[str, ...]

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


def compose_message(
    new_ids: IdentifierSet,
    metadata: Mapping[str, ModelRecord],
    url_base: str = OPENROUTER_MODEL_PAGE_BASE_URL,
) -> NotificationMessage:
    """Build the Slack message: a header plus one line per new model, sorted by ID."""
    if not new_ids:
        raise ValueError("compose_message() needs at least one new model ID")

    base = url_base.rstrip("/")
    lines = [MESSAGE_HEADER]
    for mid in new_ids:
        record = metadata.get(mid)
        display = record.display_name if record else mid
        slug = record.slug if record else mid
        lines.append(f"{display} ({mid}) - {base}/{slug}")
    return NotificationMessage(tuple(lines))


# ============================================================
# Slack Webhook Delivery
# ============================================================
def validate_webhook_url(url: str) -> bool:
    """Check that *url* looks like an HTTP(S) webhook endpoint."""
    if not url:
        return False
    return url.startswith("https://") or url.startswith("http://")


def send_slack(
    webhook_url: str,
    text: str,
    *,
    timeout: float = REQUEST_TIMEOUT,
    dry_run: bool = False,
) -> None:
    """POST *text* to a Slack incoming webhook in a single attempt."""
    if dry_run:
        for line in text.splitlines():
            log.info("[DRY-RUN] %s", line)
        return

    try:
        resp = requests.post(
            webhook_url,
            json={"text": text},
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise NotifyError(f"Slack request failed: {exc}") from exc

    if not 200 <= resp.status_code < 300:
        raise NotifyError(f"Slack returned HTTP {resp.status_code}: {resp.text[:300]}")


# ============================================================
# Single-check orchestration
# ============================================================
@dataclass(frozen=True)
class RunResult:
    status: str
    current: IdentifierSet
    new_ids: IdentifierSet = IdentifierSet()
    message: NotificationMessage | None = None
    delivered: bool = False


def run_check(
    fetch_document: Callable[[], Any],
    store: BaselineStore,
    notify: Callable[[str], None],
    *,
    url_base: str = OPENROUTER_MODEL_PAGE_BASE_URL,
    seed: bool = False,
) -> RunResult:
    """Execute one fetch-diff-notify-persist cycle.

    :class:`FetchError` and :class:`ParseError` propagate and leave the
    baseline untouched.  A failed notification is logged and the baseline
    still advances, otherwise the same models would be re-announced on every
    later run.
    """
    # 1. Current catalog
    document = fetch_document()
    current = extract_identifiers(document)
    if not current:
        raise ParseError("No model IDs parsed from catalog response; aborting")
    log.info("Fetched %d model IDs from catalog", len(current))

    # 2. Previous baseline
    try:
        previous = store.load()
    except StorageError as exc:
        log.warning("%s – resetting baseline", exc)
        previous = None

    # 3. Seed or reset: save state, skip notifications
    if seed or previous is None:
        store.save(current)
        log.info("Initialized baseline with current model list; no notifications sent.")
        return RunResult(STATUS_INITIALIZED, current)
    if not previous:
        store.save(current)
        log.info("Previous baseline empty; baseline reset; no notifications sent this run.")
        return RunResult(STATUS_INITIALIZED, current)

    # 4. Diff
    new_ids = reconcile(current, previous)
    if not new_ids:
        log.info("No new models detected.")
        # Refresh anyway in case the previous baseline drifted
        store.save(current)
        return RunResult(STATUS_UNCHANGED, current)

    # 5. Notify
    metadata = resolve_metadata(document, current)
    message = compose_message(new_ids, metadata, url_base)
    delivered = True
    try:
        notify(message.text)
    except NotifyError as exc:
        delivered = False
        log.warning("Failed to send notification: %s", exc)

    # 6. Persist
    store.save(current)
    log.info(
        "%s for %d new model(s): %s",
        "Notification sent" if delivered else "Notification NOT sent",
        len(new_ids),
        ", ".join(new_ids),
    )
    return RunResult(STATUS_NOTIFIED, current, new_ids, message, delivered)


# ============================================================
# CLI
# ============================================================
def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Detect newly listed OpenRouter models and announce them on Slack.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Environment variables (also read from .env):\n"
            "  SLACK_WEBHOOK_URL               Slack webhook (fallback for --webhook-url)\n"
            "  OPENROUTER_MONITOR_STATE_FILE   Baseline path (fallback for --state-file)\n"
        ),
    )

    p.add_argument(
        "--webhook-url",
        default=os.environ.get("SLACK_WEBHOOK_URL", ""),
        help="Slack incoming webhook URL (default: $SLACK_WEBHOOK_URL)",
    )
    p.add_argument(
        "--state-file",
        default=os.environ.get("OPENROUTER_MONITOR_STATE_FILE", DEFAULT_STATE_FILE),
        help=f"Path to the baseline file (default: {DEFAULT_STATE_FILE})",
    )
    p.add_argument("--models-url", default=OPENROUTER_MODELS_URL)
    p.add_argument("--model-page-base-url", default=OPENROUTER_MODEL_PAGE_BASE_URL)
    p.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Log what would be sent without posting to Slack",
    )
    p.add_argument(
        "--seed",
        action="store_true",
        default=False,
        help="Force a seed run: rebuild the baseline without sending notifications",
    )
    p.add_argument("--timeout-seconds", type=float, default=REQUEST_TIMEOUT)

    return p.parse_args(argv)


def run_single_check(args: argparse.Namespace) -> RunResult:
    """Wire the real HTTP collaborators into :func:`run_check`."""

    def fetch_document() -> dict[str, Any]:
        return fetch_catalog(args.models_url, timeout=args.timeout_seconds)

    def notify(text: str) -> None:
        send_slack(args.webhook_url, text, timeout=args.timeout_seconds, dry_run=args.dry_run)

    return run_check(
        fetch_document,
        BaselineStore(args.state_file),
        notify,
        url_base=args.model_page_base_url,
        seed=args.seed,
    )


# ============================================================
# Entrypoint
# ============================================================
def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    if not args.dry_run and not args.seed and not validate_webhook_url(args.webhook_url):
        log.error(
            "No valid Slack webhook URL provided. "
            "Set SLACK_WEBHOOK_URL or pass --webhook-url."
        )
        return 1

    try:
        run_single_check(args)
    except MonitorError as exc:
        log.error("Error: %s", exc)
        return 1

    log.info("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
