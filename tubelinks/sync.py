import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests
from pydantic import BaseModel

from .config import DEFAULT_STORAGE_KEY
from .errors import RemoteError
from .models import LinkRecord, utc_now_iso
from .service import parse_records
from .youtube_utils import merge_key

logger = logging.getLogger(__name__)

LOCAL_RETRIES = 2
LOCAL_BACKOFF = 0.1
REMOTE_RETRY_DELAYS = (0.5, 1.0, 2.0)

Notifier = Callable[[str, str], None]


def dedupe(links: Sequence[LinkRecord]) -> List[LinkRecord]:
    seen = set()
    unique = []
    for link in links:
        if link.url in seen:
            continue
        seen.add(link.url)
        unique.append(link)
    return unique


def _parse_timestamp(value: str) -> datetime:
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return datetime.min.replace(tzinfo=timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def reconcile(local: Sequence[LinkRecord], remote: Sequence[LinkRecord]) -> List[LinkRecord]:
    """Union of both sides keyed by merge key, newest first.

    The remote copy wins when both sides hold the same video.
    """
    merged: Dict[str, LinkRecord] = {}
    for link in remote:
        merged.setdefault(merge_key(link.url), link.model_copy(update={"source": "server"}))
    for link in local:
        merged.setdefault(merge_key(link.url), link.model_copy(update={"source": "local"}))
    return sorted(merged.values(), key=lambda l: _parse_timestamp(l.timestamp), reverse=True)


class LocalCache:
    """A small JSON key/value file playing the part of browser localStorage."""

    def __init__(self, path: Path | str, storage_key: str = DEFAULT_STORAGE_KEY):
        self.path = Path(path)
        self.storage_key = storage_key
        self.pending_key = f"{storage_key}_pending"

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except ValueError:
            logger.error("Local cache %s is corrupt, starting empty", self.path)
            return {}
        if not isinstance(data, dict):
            logger.error("Local cache %s has unexpected shape, starting empty", self.path)
            return {}
        return data

    def _set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def read_links(self) -> List[LinkRecord]:
        raw = self._load().get(self.storage_key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.error("Discarding cached links: expected a list, got %s", type(raw).__name__)
            return []
        if raw and all(isinstance(item, str) for item in raw):
            # older caches kept bare URL strings
            stamp = utc_now_iso()
            raw = [{"url": url, "timestamp": stamp} for url in raw]
        links, dropped = parse_records(raw)
        if dropped:
            logger.warning("Dropped %d malformed cached link(s)", dropped)
        return dedupe(links)

    def write_links(self, links: Sequence[LinkRecord]) -> None:
        self._set(self.storage_key, [l.to_wire() for l in links])

    def read_pending(self) -> List[Dict[str, Any]]:
        ops = self._load().get(self.pending_key) or []
        return [op for op in ops if isinstance(op, dict) and "op" in op] if isinstance(ops, list) else []

    def write_pending(self, ops: Sequence[Dict[str, Any]]) -> None:
        self._set(self.pending_key, list(ops))

    @property
    def needs_sync(self) -> bool:
        try:
            return bool(self.read_pending())
        except OSError as exc:
            logger.error("Could not read pending operations from %s: %s", self.path, exc)
            return False


class TransientCache:
    """In-memory stand-in used when the local cache file cannot be written."""

    def __init__(self):
        self.links: List[LinkRecord] = []

    def read_links(self) -> List[LinkRecord]:
        return list(self.links)

    def write_links(self, links: Sequence[LinkRecord]) -> None:
        self.links = list(links)


class RemoteLinksClient:
    """Thin client for the /api/links endpoints.

    ``session`` only needs a ``request(method, url, json=..., timeout=...)``
    method, so a ``requests.Session`` or a test client both work.
    """

    def __init__(self, base_url: str, session: Any = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Any = None, allow_not_found: bool = False) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RemoteError(f"{method} {url} failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        status = resp.status_code
        if status == 404 and allow_not_found and isinstance(body, dict) and "deleted" in body:
            return body
        if not 200 <= status < 300:
            detail = body.get("message") or body.get("error") if isinstance(body, dict) else None
            raise RemoteError(f"{method} {url} returned {status}: {detail or 'no detail'}", status)
        if isinstance(body, dict) and body.get("success") is False:
            raise RemoteError(body.get("warning") or body.get("error") or body.get("message") or "request failed", status)
        return body

    def load_links(self) -> List[LinkRecord]:
        body = self._request("GET", "/links")
        if isinstance(body, dict):
            body = body.get("links")
        if not isinstance(body, list):
            raise RemoteError("GET /links returned an unexpected payload")
        links, dropped = parse_records(body)
        if dropped:
            logger.warning("Server returned %d malformed link(s)", dropped)
        return links

    def save_links(self, links: Sequence[LinkRecord]) -> Dict[str, Any]:
        return self._request("POST", "/links", {"links": [l.to_wire() for l in links]})

    def delete_link(self, key: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/links/{quote(key, safe='')}", allow_not_found=True)

    def clear_links(self) -> Dict[str, Any]:
        return self._request("DELETE", "/links")

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")


class SaveOutcome(BaseModel):
    success: bool
    local_ok: bool
    remote_ok: bool
    queued: bool = False
    persistence_at_risk: bool = False
    message: str = ""


class LinkSyncEngine:
    def __init__(
        self,
        local: LocalCache,
        remote: RemoteLinksClient,
        notify: Optional[Notifier] = None,
        sleep: Callable[[float], None] = time.sleep,
        transient: Optional[TransientCache] = None,
        local_retries: int = LOCAL_RETRIES,
        local_backoff: float = LOCAL_BACKOFF,
        remote_delays: Sequence[float] = REMOTE_RETRY_DELAYS,
    ):
        self.local = local
        self.remote = remote
        self.notify = notify
        self.sleep = sleep
        self.transient = transient or TransientCache()
        self.local_retries = local_retries
        self.local_backoff = local_backoff
        self.remote_delays = tuple(remote_delays)
        self.offline = False
        self._local_degraded = False

    def _notify(self, level: str, message: str, silent: bool = False) -> None:
        if silent and level != "error":
            return
        if self.notify is not None:
            self.notify(level, message)

    # --- local side ---

    def _read_local(self) -> List[LinkRecord]:
        if self._local_degraded:
            return self.transient.read_links()
        try:
            return self.local.read_links()
        except OSError as exc:
            logger.error("Could not read local cache: %s", exc)
            return self.transient.read_links()

    def _write_local(self, links: Sequence[LinkRecord]) -> bool:
        for attempt in range(self.local_retries + 1):
            try:
                self.local.write_links(links)
                self._local_degraded = False
                return True
            except OSError as exc:
                logger.warning("Local cache write attempt %d failed: %s", attempt + 1, exc)
                if attempt < self.local_retries:
                    self.sleep(self.local_backoff * (attempt + 1))
        self.transient.write_links(links)
        self._local_degraded = True
        logger.error("Local cache unavailable, links held in memory only")
        return False

    def _enqueue(self, op: Dict[str, Any]) -> bool:
        try:
            ops = self.local.read_pending()
            if op["op"] == "save" and ops and ops[-1]["op"] == "save":
                return True
            ops.append({**op, "queuedAt": utc_now_iso()})
            self.local.write_pending(ops)
            return True
        except OSError as exc:
            logger.error("Could not record pending %s operation: %s", op["op"], exc)
            return False

    # --- remote side ---

    def _remote_with_retry(self, operation: str, func: Callable[..., Any], *args) -> bool:
        attempts = len(self.remote_delays)
        for attempt in range(attempts):
            try:
                func(*args)
                self.offline = False
                return True
            except RemoteError as exc:
                logger.warning("Remote %s attempt %d/%d failed: %s", operation, attempt + 1, attempts, exc)
                if exc.status is not None and 400 <= exc.status < 500 and exc.status not in (408, 429):
                    break
                if attempt < attempts - 1:
                    self.sleep(self.remote_delays[attempt])
        self.offline = True
        return False

    def _persist(
        self,
        links: Sequence[LinkRecord],
        op: Dict[str, Any],
        remote_call: Callable[..., Any],
        args: tuple,
        silent: bool,
    ) -> SaveOutcome:
        local_ok = self._write_local(links)
        if not local_ok:
            self._notify("warning", "Local storage failed; links are kept for this session only", silent)

        remote_ok = self._remote_with_retry(op["op"], remote_call, *args)
        queued = False
        if not remote_ok and local_ok:
            queued = self._enqueue(op)

        if remote_ok and local_ok:
            message = "Saved"
        elif local_ok:
            message = "Saved locally; will sync when the server is reachable"
        elif remote_ok:
            message = "Saved to server; local storage is unavailable"
        else:
            message = "Could not save links locally or to the server"

        outcome = SaveOutcome(
            success=local_ok or remote_ok,
            local_ok=local_ok,
            remote_ok=remote_ok,
            queued=queued,
            persistence_at_risk=not local_ok,
            message=message,
        )
        if not outcome.success:
            logger.error("%s operation failed on both local and remote paths", op["op"])
            self._notify("error", message)
        elif not remote_ok:
            self._notify("warning", message, silent)
        else:
            self._notify("info", message, silent)
        return outcome

    # --- public operations ---

    def load_links(self) -> List[LinkRecord]:
        if self.local.needs_sync:
            self.flush_pending()

        local_links = [l.model_copy(update={"source": "local"}) for l in self._read_local()]

        if self.local.needs_sync:
            # unsynced local edits; the server copy is stale
            logger.info("Pending operations remain, using local links only")
            self.offline = True
            return local_links

        try:
            remote_links = self.remote.load_links()
        except RemoteError as exc:
            logger.warning("Falling back to local cache: %s", exc)
            self.offline = True
            return local_links
        self.offline = False

        if not remote_links and not local_links:
            return []

        if not remote_links:
            logger.info("Server is empty, pushing %d local link(s)", len(local_links))
            if not self._remote_with_retry("save", self.remote.save_links, local_links):
                self._enqueue({"op": "save"})
            return local_links

        remote_links = [l.model_copy(update={"source": "server"}) for l in remote_links]
        if not local_links:
            self._write_local(remote_links)
            return remote_links

        merged = reconcile(local_links, remote_links)
        self._write_local(merged)
        local_only = [l for l in merged if l.source == "local"]
        if local_only:
            logger.info("Pushing %d local-only link(s) to the server", len(local_only))
            if not self._remote_with_retry("save", self.remote.save_links, merged):
                self._enqueue({"op": "save"})
        return merged

    def save_links(self, links: Sequence[LinkRecord], silent: bool = False) -> SaveOutcome:
        links = dedupe(links)
        return self._persist(links, {"op": "save"}, self.remote.save_links, (links,), silent)

    def delete_link(self, key: str, remaining: Sequence[LinkRecord], silent: bool = False) -> SaveOutcome:
        return self._persist(remaining, {"op": "delete", "key": key}, self.remote.delete_link, (key,), silent)

    def delete_links(self, keys: Sequence[str], remaining: Sequence[LinkRecord], silent: bool = False) -> SaveOutcome:
        outcome = None
        for key in keys:
            if outcome is not None and not outcome.remote_ok:
                # server already gave up on an earlier key
                self._enqueue({"op": "delete", "key": key})
                continue
            outcome = self.delete_link(key, remaining, silent=True)
        if outcome is None:
            return SaveOutcome(success=True, local_ok=True, remote_ok=True, message="Nothing to delete")
        self._notify("info" if outcome.remote_ok else "warning", outcome.message, silent)
        return outcome

    def clear_links(self, silent: bool = False) -> SaveOutcome:
        return self._persist([], {"op": "clear"}, self.remote.clear_links, (), silent)

    def _replay(self, op: Dict[str, Any]) -> None:
        kind = op.get("op")
        if kind == "save":
            self.remote.save_links(self._read_local())
        elif kind == "delete":
            self.remote.delete_link(op["key"])
        elif kind == "clear":
            self.remote.clear_links()
        else:
            logger.warning("Skipping unknown pending operation %r", kind)

    def flush_pending(self) -> int:
        """Replay queued operations in order; returns how many went through."""
        try:
            ops = self.local.read_pending()
        except OSError as exc:
            logger.error("Could not read pending operations: %s", exc)
            return 0
        if not ops:
            return 0

        done = 0
        for op in ops:
            try:
                self._replay(op)
            except RemoteError as exc:
                logger.warning("Pending %s not replayed: %s", op.get("op"), exc)
                self.offline = True
                break
            done += 1

        try:
            self.local.write_pending(ops[done:])
        except OSError as exc:
            logger.error("Could not update pending operations: %s", exc)
        if done:
            self.offline = False
            logger.info("Replayed %d pending operation(s), %d left", done, len(ops) - done)
        return done

    def handle_online(self) -> int:
        logger.info("Network is back, flushing pending operations")
        done = self.flush_pending()
        if done:
            self._notify("info", f"Synced {done} pending change(s)")
        return done
