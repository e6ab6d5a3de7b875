"""Incremental corpus synchronization.

API partitions are fetched in full and replace their local snapshot
wholesale. Markdown site documents are fetched conditionally, using the
ETag / Last-Modified tokens kept in the SyncCache, so unchanged pages are
never rewritten.
"""
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse, unquote

import httpx

from models.results import SyncResult, SyncAllResult
from services.help_api_client import HelpApiClient, SourceFetchError
from services.markdown_crawler import MarkdownCrawler, CrawlError
from services.snapshot_store import SnapshotStore, atomic_write_json, atomic_write_text, read_json, SnapshotCorruptError
from config import SITE_PARTITION

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def site_unit_path(url: str) -> PurePosixPath:
    """Relative file path of a site document; the query string is ignored."""
    parts = [p for p in PurePosixPath(unquote(urlparse(url).path)).parts if p not in ("/", "..", ".")]
    return PurePosixPath(*parts) if parts else PurePosixPath("index.md")


class SyncCache:
    """
    Source id -> last seen change token and sync time, persisted as JSON.

    Keys are partition names for API sources and absolute URLs for crawled
    documents. Entries are last-write-wins; each source has one writer.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._entries: Dict[str, Dict[str, Optional[str]]] = {}
        self._lock = threading.Lock()
        self.load()

    def load(self) -> None:
        try:
            data = read_json(self.path)
        except FileNotFoundError:
            data = {}
        except SnapshotCorruptError as e:
            logger.warning(f"Ignoring unreadable sync cache: {e}")
            data = {}
        with self._lock:
            self._entries = {k: dict(v) for k, v in data.items() if isinstance(v, dict)} if isinstance(data, dict) else {}

    def save(self) -> None:
        with self._lock:
            snapshot = {k: dict(v) for k, v in self._entries.items()}
        atomic_write_json(self.path, snapshot)

    def get(self, key: str) -> Dict[str, Optional[str]]:
        with self._lock:
            return dict(self._entries.get(key, {}))

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def change_token(self, key: str) -> Optional[str]:
        """ETag if the source sent one, else Last-Modified, else None."""
        entry = self.get(key)
        return entry.get("etag") or entry.get("last_modified")

    def record(
        self,
        key: str,
        last_sync: str,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None
    ) -> None:
        entry = {"last_sync": last_sync}
        if etag:
            entry["etag"] = etag
        if last_modified:
            entry["last_modified"] = last_modified
        with self._lock:
            self._entries[key] = entry

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class SyncEngine:
    """Keeps the local corpus snapshots current with minimal re-fetching."""

    def __init__(
        self,
        store: SnapshotStore,
        help_client: Optional[HelpApiClient] = None,
        crawler: Optional[MarkdownCrawler] = None,
        cache: Optional[SyncCache] = None,
        clock: Callable[[], str] = utc_now_iso
    ):
        """
        Initialize the sync engine.

        Args:
            store: Snapshot locations on disk
            help_client: Source for API partitions (None disables them)
            crawler: Source for the markdown site partition (None disables it)
            cache: Change-token cache (defaults to the store's cache file)
            clock: Returns the timestamp recorded as last_sync
        """
        self.store = store
        self.help_client = help_client
        self.crawler = crawler
        self.cache = cache or SyncCache(store.cache_path)
        self.clock = clock

    @property
    def partitions(self) -> List[str]:
        names = list(self.help_client.partitions) if self.help_client else []
        if self.crawler:
            names.append(SITE_PARTITION)
        return names

    def sync(self, partition: str) -> SyncResult:
        """
        Sync one partition.

        Raises:
            ValueError: If the partition has no configured source
            SourceFetchError: If the API partition cannot be fetched
            CrawlError: If the markdown site lists no documents
        """
        if partition == SITE_PARTITION and self.crawler:
            return self.sync_site()
        if self.help_client and partition in self.help_client.partitions:
            return self.sync_api_partition(partition)
        raise ValueError(f"No source configured for partition '{partition}'")

    def sync_all(self) -> SyncAllResult:
        """
        Sync every configured partition.

        A failing partition is reported in `errors` and does not stop the others.
        """
        result = SyncAllResult()
        for partition in self.partitions:
            try:
                result.results[partition] = self.sync(partition)
            except (SourceFetchError, CrawlError) as e:
                logger.error(f"Sync failed for {partition}: {e}")
                result.errors[partition] = str(e)
        return result

    def sync_api_partition(self, partition: str) -> SyncResult:
        """
        Replace a partition's raw records with the API's current state.

        Returns:
            SyncResult listing record ids that were added, changed or removed
        """
        records = self.help_client.fetch_records(partition)
        new_rows = [record.model_dump() for record in records]

        previous = {str(row.get("id")): row for row in (self.store.read_corpus(partition) or []) if isinstance(row, dict)}
        current = {str(row["id"]): row for row in new_rows}
        changed = [rid for rid, row in current.items() if previous.get(rid) != row]
        changed.extend(rid for rid in previous if rid not in current)

        path = self.store.write_corpus(partition, new_rows)
        self.cache.record(partition, last_sync=self.clock())
        self.cache.save()

        logger.info(f"Synced {partition}: {len(new_rows)} records, {len(changed)} changed")
        return SyncResult(
            partition=partition,
            units_downloaded=len(new_rows),
            changed_unit_ids=changed,
            snapshot_path=str(path),
        )

    def local_path_for(self, url: str) -> Path:
        """Map a document URL to its file under the site directory."""
        return self.store.site_dir.joinpath(*site_unit_path(url).parts)

    def unit_id_for(self, url: str) -> str:
        return site_unit_path(url).as_posix()

    def sync_site(self) -> SyncResult:
        """
        Conditionally fetch every markdown document on the site.

        Unchanged (304) documents are left untouched; failed fetches are
        skipped and retried on the next sync. URLs that map to the same local
        file are fetched once, first listed wins. Documents no longer listed
        are removed together with their cache entries, but only when the
        listing is complete.

        Raises:
            CrawlError: If the site lists no markdown documents
        """
        downloaded = 0
        changed: List[str] = []
        skipped: List[str] = []

        with self.crawler as crawler:
            listing = crawler.discover()
            urls = self._dedupe_by_unit(listing.urls)

            for url in urls:
                unit_id = self.unit_id_for(url)
                path = self.local_path_for(url)
                token = self.cache.get(url) if path.exists() else {}

                try:
                    result = crawler.fetch(url, etag=token.get("etag"), last_modified=token.get("last_modified"))
                except httpx.RequestError as e:
                    logger.warning(f"Skipping {url}: {e}")
                    skipped.append(unit_id)
                    continue

                if result.not_modified:
                    logger.debug(f"Not modified: {url}")
                    continue
                if not result.ok:
                    logger.warning(f"Skipping {url}: HTTP {result.status_code}")
                    skipped.append(unit_id)
                    continue

                atomic_write_text(path, result.text or "")
                self.cache.record(url, last_sync=self.clock(), etag=result.etag, last_modified=result.last_modified)
                downloaded += 1
                changed.append(unit_id)

        if listing.complete:
            changed.extend(self._prune_site(urls))
        else:
            logger.warning("Site listing incomplete; keeping documents that were not listed")
        self.cache.save()

        logger.info(
            f"Synced site: {downloaded} downloaded, {len(skipped)} skipped, "
            f"{len(urls) - downloaded - len(skipped)} unchanged"
        )
        return SyncResult(
            partition=SITE_PARTITION,
            units_downloaded=downloaded,
            changed_unit_ids=changed,
            skipped_unit_ids=skipped,
            snapshot_path=str(self.store.site_dir),
        )

    def _dedupe_by_unit(self, urls: List[str]) -> List[str]:
        kept: Dict[str, str] = {}
        for url in urls:
            unit_id = self.unit_id_for(url)
            if unit_id in kept:
                logger.warning(f"Ignoring {url}: same document as {kept[unit_id]}")
                continue
            kept[unit_id] = url
        return list(kept.values())

    def _prune_site(self, listed: List[str]) -> List[str]:
        listed_urls = set(listed)
        listed_units = {self.unit_id_for(url) for url in listed}
        removed = []
        for key in self.cache.keys():
            if "://" not in key or key in listed_urls:
                continue
            self.cache.remove(key)
            unit_id = self.unit_id_for(key)
            # Another listed URL may still own the same file
            if unit_id in listed_units:
                continue
            path = self.local_path_for(key)
            if path.exists():
                path.unlink()
            removed.append(unit_id)
            logger.info(f"Removed document no longer on site: {key}")
        return removed
