import asyncio
import logging
from typing import Any, Dict, Iterable, List, Tuple

from pydantic import ValidationError

from .config import DEFAULT_STORAGE_KEY
from .errors import MalformedInput, StoreCorrupt, StoreError
from .models import ClearResult, DeleteResult, LinkBlob, LinkRecord, SaveResult, utc_now_iso
from .storage import KVStoreAdapter
from .youtube_utils import is_valid_youtube_link

logger = logging.getLogger(__name__)

UNAVAILABLE_WARNING = "KV storage not configured properly"


def parse_records(raw_links: Iterable[Any], strict_urls: bool = False) -> Tuple[List[LinkRecord], int]:
    """Validate raw link dicts, returning the good records and how many were dropped."""
    records: List[LinkRecord] = []
    rejected = 0
    for raw in raw_links:
        if not isinstance(raw, dict):
            rejected += 1
            continue
        url = raw.get("url")
        if not isinstance(url, str) or not url.strip():
            rejected += 1
            continue
        if strict_urls and not is_valid_youtube_link(url):
            rejected += 1
            continue
        try:
            records.append(LinkRecord.model_validate(raw))
        except ValidationError:
            rejected += 1
    return records, rejected


class LinkPersistenceService:
    """get-all / save / delete-one / clear-all over the single links blob."""

    def __init__(
        self,
        adapter: KVStoreAdapter,
        storage_key: str = DEFAULT_STORAGE_KEY,
        strict_urls: bool = False,
    ):
        self.adapter = adapter
        self.storage_key = storage_key
        self.strict_urls = strict_urls
        self._write_lock = asyncio.Lock()

    async def _read_blob(self) -> LinkBlob:
        data = await self.adapter.get(self.storage_key)
        if not data:
            return LinkBlob()
        links, dropped = parse_records(data.get("links") or [])
        if dropped:
            logger.warning("Skipped %d malformed stored link(s) under %s", dropped, self.storage_key)
        version = data.get("version", 0)
        return LinkBlob(
            links=links,
            version=version if isinstance(version, int) else 0,
            updated_at=data.get("updatedAt"),
        )

    async def _write_blob(self, links: List[LinkRecord], previous: LinkBlob) -> LinkBlob:
        blob = LinkBlob(links=links, version=previous.version + 1, updated_at=utc_now_iso())
        await self.adapter.put(self.storage_key, blob.to_wire())
        return blob

    def status(self) -> Dict[str, Any]:
        return {
            "configured": self.adapter.configured,
            "backend": self.adapter.backend_name,
            "storageKey": self.storage_key,
        }

    async def get_all(self) -> List[LinkRecord]:
        if not self.adapter.configured:
            logger.warning("KV storage is not configured, returning empty links list")
            return []
        try:
            blob = await self._read_blob()
        except StoreError as exc:
            logger.error("Error getting links: %s", exc)
            return []
        logger.debug("Retrieved %d link(s)", len(blob.links))
        return blob.links

    async def save(self, new_links: Any) -> SaveResult:
        if not isinstance(new_links, list):
            raise MalformedInput("Links must be an array")

        records, rejected = parse_records(new_links, self.strict_urls)
        if rejected:
            logger.info("Dropped %d invalid link(s) from save request", rejected)

        if not self.adapter.configured:
            logger.error("KV storage is not configured, cannot save links")
            return SaveResult(
                success=False,
                message="Warning: links could not be saved (KV storage not available)",
                warning=UNAVAILABLE_WARNING,
                total_count=len(records),
                rejected_count=rejected,
            )

        async with self._write_lock:
            try:
                existing = await self._read_blob()
                seen = {l.url for l in existing.links}
                unique_new: List[LinkRecord] = []
                for record in records:
                    if record.url in seen:
                        continue
                    seen.add(record.url)
                    unique_new.append(record)
                blob = await self._write_blob(existing.links + unique_new, existing)
            except StoreError as exc:
                logger.error(
                    "Error saving links (%d attempted): %s", len(records), exc, exc_info=True
                )
                return SaveResult(
                    success=False,
                    message="Warning: some links may not have been saved due to an error",
                    error=str(exc),
                    total_count=len(records),
                    rejected_count=rejected,
                )

        logger.info(
            "Links saved: added=%d total=%d version=%d", len(unique_new), len(blob.links), blob.version
        )
        return SaveResult(
            message="Links added successfully",
            added_count=len(unique_new),
            total_count=len(blob.links),
            rejected_count=rejected,
            version=blob.version,
        )

    async def delete_one(self, key: str) -> DeleteResult:
        if not key or not isinstance(key, str):
            raise MalformedInput("Link ID is required and must be a string")

        if not self.adapter.configured:
            logger.error("KV storage is not configured, cannot delete link")
            return DeleteResult(
                success=False,
                message="Warning: cannot delete link (KV storage not available)",
                warning=UNAVAILABLE_WARNING,
            )

        async with self._write_lock:
            try:
                existing = await self._read_blob()
                remaining = [l for l in existing.links if l.url != key and l.id != key]
                deleted = len(remaining) != len(existing.links)
                if deleted:
                    await self._write_blob(remaining, existing)
            except StoreError as exc:
                logger.error("Error deleting link %s: %s", key, exc, exc_info=True)
                return DeleteResult(
                    success=False,
                    message="Warning: could not delete link due to an error",
                    error=str(exc),
                )

        logger.info("Link deletion: key=%s deleted=%s total=%d", key, deleted, len(remaining))
        return DeleteResult(
            message="Link deleted successfully" if deleted else "Link not found",
            deleted=deleted,
            total_count=len(remaining),
        )

    async def clear_all(self) -> ClearResult:
        if not self.adapter.configured:
            logger.error("KV storage is not configured, cannot clear links")
            return ClearResult(
                success=False,
                message="Warning: cannot clear links (KV storage not available)",
                warning=UNAVAILABLE_WARNING,
            )

        async with self._write_lock:
            try:
                try:
                    previous = await self._read_blob()
                except StoreCorrupt as exc:
                    # about to be replaced anyway
                    logger.warning("Clearing over unreadable blob: %s", exc)
                    previous = LinkBlob()
                await self._write_blob([], previous)
            except StoreError as exc:
                logger.error("Error clearing all links: %s", exc, exc_info=True)
                return ClearResult(
                    success=False,
                    message="Warning: could not clear links due to an error",
                    error=str(exc),
                )

        logger.info("Links cleared")
        return ClearResult(message="All links cleared successfully")
