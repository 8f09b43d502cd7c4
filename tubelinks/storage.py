import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import requests

from .config import Settings
from .errors import StoreCorrupt, StoreTimeout, StoreUnavailable

logger = logging.getLogger(__name__)

DEFAULT_READ_TIMEOUT = 5.0
DEFAULT_WRITE_TIMEOUT = 10.0

CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"


class KVBackend(Protocol):
    name: str

    def get(self, key: str) -> Optional[str]: ...
    def put(self, key: str, value: str) -> None: ...


class MemoryKVBackend:
    name = "memory"

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value


class FileKVBackend:
    """One JSON file per key inside a directory."""

    name = "file"

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def put(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)


class CloudflareKVBackend:
    """Workers KV namespace accessed through the Cloudflare REST API."""

    name = "cloudflare"

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        api_token: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_WRITE_TIMEOUT,
    ):
        self.base_url = f"{CLOUDFLARE_API}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_token}"})
        self.timeout = timeout

    def _url(self, key: str) -> str:
        return f"{self.base_url}/values/{quote(key, safe='')}"

    def get(self, key: str) -> Optional[str]:
        resp = self.session.get(self._url(key), timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.text

    def put(self, key: str, value: str) -> None:
        resp = self.session.put(
            self._url(key),
            data=value.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
            timeout=self.timeout,
        )
        resp.raise_for_status()


def build_backend(settings: Settings) -> Optional[KVBackend]:
    """Pick the backend named in settings; None means "not configured"."""
    kv = settings.kv
    if kv.backend == "memory":
        return MemoryKVBackend()
    if kv.backend == "file":
        return FileKVBackend(kv.data_dir)
    if kv.backend == "cloudflare":
        if not (kv.account_id and kv.namespace_id and kv.api_token):
            logger.warning("Cloudflare KV selected but credentials are missing; store is unconfigured")
            return None
        return CloudflareKVBackend(
            kv.account_id,
            kv.namespace_id,
            kv.api_token,
            timeout=settings.server.write_timeout,
        )
    return None


class KVStoreAdapter:
    """Async, time-bounded JSON get/put over a blocking KV backend."""

    def __init__(
        self,
        backend: Optional[KVBackend],
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ):
        self.backend = backend
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout

    @property
    def configured(self) -> bool:
        return self.backend is not None

    @property
    def backend_name(self) -> str:
        return self.backend.name if self.backend is not None else "none"

    async def _run(self, operation: str, timeout: float, func, *args):
        loop = asyncio.get_running_loop()
        try:
            # the executor thread is left running if this times out
            return await asyncio.wait_for(loop.run_in_executor(None, func, *args), timeout)
        except asyncio.TimeoutError:
            raise StoreTimeout(operation, timeout) from None
        except Exception as exc:
            raise StoreUnavailable(f"KV {operation} failed: {exc}") from exc

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        if self.backend is None:
            return None
        raw = await self._run("get", self.read_timeout, self.backend.get, key)
        if raw is None or raw == "":
            return None
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise StoreCorrupt(f"value under {key!r} is not valid JSON") from exc
        if not isinstance(data, dict):
            raise StoreCorrupt(f"value under {key!r} is not a JSON object")
        return data

    async def put(self, key: str, blob: Dict[str, Any]) -> None:
        if self.backend is None:
            raise StoreUnavailable("KV storage is not configured")
        await self._run("put", self.write_timeout, self.backend.put, key, json.dumps(blob))
