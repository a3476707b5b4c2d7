from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from config import get_settings

logger = logging.getLogger(__name__)

COLLECTIONS = ("transactions", "categories")
ENDPOINTS = {"transactions": "/api/transactions", "categories": "/api/categories"}


class SyncState(str, Enum):
    pending_remote = "pending_remote"
    confirmed = "confirmed"
    local_only = "local_only"


class RemoteUnavailable(RuntimeError):
    pass


class RemoteRejected(ValueError):
    def __init__(self, status: int, detail: object) -> None:
        super().__init__(f"Request rejected with status {status}: {detail}")
        self.status = status
        self.detail = detail


class CacheCorrupted(ValueError):
    pass


class ApiClient:
    def __init__(
        self, base_url: Optional[str] = None, timeout: Optional[float] = None
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.api_timeout_secs

    def request(self, method: str, path: str, payload: Optional[dict] = None):
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = Request(
            f"{self.base_url}{path}",
            data=data,
            method=method,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                body = resp.read()
        except HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace")
            try:
                detail: object = json.loads(raw)
            except json.JSONDecodeError:
                detail = raw
            if 400 <= exc.code < 500:
                raise RemoteRejected(exc.code, detail) from exc
            raise RemoteUnavailable(f"{method} {path} failed with {exc.code}") from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise RemoteUnavailable(f"{method} {path} unreachable") from exc
        if not body:
            return None
        return json.loads(body.decode("utf-8"))


@dataclass
class CachedRecord:
    record: dict
    state: SyncState
    pending_op: Optional[str] = None  # create | update | delete

    @property
    def visible(self) -> bool:
        return self.pending_op != "delete"

    def to_json(self) -> dict:
        return {
            "record": self.record,
            "state": self.state.value,
            "pendingOp": self.pending_op,
        }

    @classmethod
    def from_json(cls, raw: object) -> "CachedRecord":
        if not isinstance(raw, dict) or not isinstance(raw.get("record"), dict):
            raise CacheCorrupted("Cached entry must hold a record object")
        if not isinstance(raw["record"].get("id"), int):
            raise CacheCorrupted("Cached record is missing an integer id")
        try:
            state = SyncState(raw.get("state"))
        except ValueError as exc:
            raise CacheCorrupted(f"Unknown sync state {raw.get('state')!r}") from exc
        return cls(record=raw["record"], state=state, pending_op=raw.get("pendingOp"))


@dataclass
class CacheSnapshot:
    transactions: list[CachedRecord] = field(default_factory=list)
    categories: list[CachedRecord] = field(default_factory=list)
    settings: Optional[dict] = None


class LocalStore:
    """One JSON file with three keys: transactions, categories and settings."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path or get_settings().cache_path)

    def load(self) -> CacheSnapshot:
        if not self.path.exists():
            return CacheSnapshot()
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise CacheCorrupted(f"Cache file {self.path} is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise CacheCorrupted("Cache file must contain an object")
        snapshot = CacheSnapshot()
        for name in COLLECTIONS:
            entries = payload.get(name, [])
            if not isinstance(entries, list):
                raise CacheCorrupted(f"Cached {name} must be a list")
            setattr(snapshot, name, [CachedRecord.from_json(e) for e in entries])
        settings = payload.get("settings")
        if settings is not None and not isinstance(settings, dict):
            raise CacheCorrupted("Cached settings must be an object")
        snapshot.settings = settings
        return snapshot

    def save(self, snapshot: CacheSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "transactions": [e.to_json() for e in snapshot.transactions],
            "categories": [e.to_json() for e in snapshot.categories],
            "settings": snapshot.settings,
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, default=str), encoding="utf-8")
        tmp.replace(self.path)


class ClientDataCache:
    """Client-side mirror of transactions, categories and settings.

    Writes go to the API first. If the API cannot be reached the change is
    kept locally as ``local_only`` and replayed by :meth:`sync_pending`. If the
    API rejects the change, :class:`RemoteRejected` propagates and the cache
    is left as it was.
    """

    def __init__(
        self, api: Optional[ApiClient] = None, store: Optional[LocalStore] = None
    ) -> None:
        self.api = api or ApiClient()
        self.store = store or LocalStore()
        self.snapshot = self.store.load()

    # reads

    def records(self, collection: str) -> list[dict]:
        return [e.record for e in self._entries(collection) if e.visible]

    @property
    def transactions(self) -> list[dict]:
        return self.records("transactions")

    @property
    def categories(self) -> list[dict]:
        return self.records("categories")

    @property
    def settings(self) -> Optional[dict]:
        return self.snapshot.settings

    def sync_state(self, collection: str, record_id: int) -> SyncState:
        return self._find(collection, record_id, include_hidden=True).state

    def pending(self) -> list[tuple[str, CachedRecord]]:
        return [
            (name, e)
            for name in COLLECTIONS
            for e in self._entries(name)
            if e.state != SyncState.confirmed
        ]

    def refresh(self) -> bool:
        """Reload confirmed records from the API, keeping unsynced local changes."""
        try:
            remote = {
                name: self.api.request("GET", ENDPOINTS[name]) for name in COLLECTIONS
            }
            settings = self.api.request("GET", "/api/settings")
        except RemoteUnavailable:
            logger.info("cache_refresh_skipped: reason=unreachable")
            return False
        for name in COLLECTIONS:
            local = [e for e in self._entries(name) if e.state != SyncState.confirmed]
            local_ids = {e.record["id"] for e in local}
            confirmed = [
                CachedRecord(record=r, state=SyncState.confirmed)
                for r in remote[name]
                if r["id"] not in local_ids
            ]
            setattr(self.snapshot, name, confirmed + local)
        self.snapshot.settings = settings
        self._save()
        return True

    # writes

    def add(self, collection: str, payload: dict) -> dict:
        entry = CachedRecord(
            record={**payload, "id": self._next_local_id(collection)},
            state=SyncState.pending_remote,
            pending_op="create",
        )
        self._entries(collection).append(entry)
        self._save()
        try:
            created = self.api.request("POST", ENDPOINTS[collection], payload)
        except RemoteRejected:
            self._entries(collection).remove(entry)
            self._save()
            raise
        except RemoteUnavailable:
            entry.state = SyncState.local_only
            self._save()
            logger.info(
                f"cache_local_write: collection={collection} op=create "
                f"id={entry.record['id']}"
            )
            return entry.record
        entry.record = created
        entry.state = SyncState.confirmed
        entry.pending_op = None
        self._save()
        return created

    def update(self, collection: str, record_id: int, changes: dict) -> dict:
        entry = self._find(collection, record_id)
        if entry.pending_op == "create":
            # never reached the server; fold the change into the pending create
            entry.record = {**entry.record, **changes}
            self._save()
            return entry.record
        if entry.state == SyncState.confirmed:
            body = changes
        else:
            # earlier offline edits have not reached the server yet
            merged = {**entry.record, **changes}
            body = {k: v for k, v in merged.items() if k != "id"}
        previous = (dict(entry.record), entry.state, entry.pending_op)
        entry.state = SyncState.pending_remote
        entry.pending_op = "update"
        self._save()
        try:
            updated = self.api.request(
                "PATCH", f"{ENDPOINTS[collection]}/{record_id}", body
            )
        except RemoteRejected:
            entry.record, entry.state, entry.pending_op = previous
            self._save()
            raise
        except RemoteUnavailable:
            entry.record = {**entry.record, **changes}
            entry.state = SyncState.local_only
            self._save()
            logger.info(
                f"cache_local_write: collection={collection} op=update id={record_id}"
            )
            return entry.record
        entry.record = updated
        entry.state = SyncState.confirmed
        entry.pending_op = None
        self._save()
        return updated

    def remove(self, collection: str, record_id: int) -> None:
        entry = self._find(collection, record_id)
        if entry.pending_op == "create":
            self._entries(collection).remove(entry)
            self._save()
            return
        previous = (entry.state, entry.pending_op)
        entry.state = SyncState.pending_remote
        entry.pending_op = "delete"
        self._save()
        try:
            self.api.request("DELETE", f"{ENDPOINTS[collection]}/{record_id}")
        except RemoteRejected:
            entry.state, entry.pending_op = previous
            self._save()
            raise
        except RemoteUnavailable:
            entry.state = SyncState.local_only
            self._save()
            logger.info(
                f"cache_local_write: collection={collection} op=delete id={record_id}"
            )
            return
        self._entries(collection).remove(entry)
        self._save()

    def update_settings(self, changes: dict) -> dict:
        updated = self.api.request("POST", "/api/settings", changes)
        self.snapshot.settings = updated
        self._save()
        return updated

    def sync_pending(self) -> dict[str, int]:
        """Replay unsynced changes. Stops at the first unreachable call."""
        synced = 0
        rejected = 0
        id_map: dict[int, int] = {}
        # categories first so transactions can be remapped onto server ids
        for name in ("categories", "transactions"):
            for entry in list(self._entries(name)):
                if entry.state == SyncState.confirmed:
                    continue
                try:
                    self._replay(name, entry, id_map)
                except RemoteUnavailable:
                    self._save()
                    logger.info(f"cache_sync_paused: synced={synced}")
                    return {"synced": synced, "rejected": rejected}
                except RemoteRejected as exc:
                    rejected += 1
                    self._entries(name).remove(entry)
                    logger.warning(
                        f"cache_sync_rejected: collection={name} "
                        f"id={entry.record.get('id')} status={exc.status}"
                    )
                    continue
                synced += 1
        self._save()
        logger.info(f"cache_sync_done: synced={synced} rejected={rejected}")
        return {"synced": synced, "rejected": rejected}

    # helpers

    def _replay(self, name: str, entry: CachedRecord, id_map: dict[int, int]) -> None:
        record = dict(entry.record)
        if name == "transactions" and record.get("categoryId") in id_map:
            record["categoryId"] = id_map[record["categoryId"]]
        record_id = record.pop("id")
        if entry.pending_op == "create":
            created = self.api.request("POST", ENDPOINTS[name], record)
            if name == "categories":
                id_map[record_id] = created["id"]
            entry.record = created
        elif entry.pending_op == "delete":
            self.api.request("DELETE", f"{ENDPOINTS[name]}/{record_id}")
            self._entries(name).remove(entry)
            return
        else:
            entry.record = self.api.request(
                "PATCH", f"{ENDPOINTS[name]}/{record_id}", record
            )
        entry.state = SyncState.confirmed
        entry.pending_op = None

    def _entries(self, collection: str) -> list[CachedRecord]:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        return getattr(self.snapshot, collection)

    def _find(
        self, collection: str, record_id: int, include_hidden: bool = False
    ) -> CachedRecord:
        for entry in self._entries(collection):
            if entry.record.get("id") == record_id and (
                include_hidden or entry.visible
            ):
                return entry
        raise KeyError(f"{collection} record {record_id} not in cache")

    def _next_local_id(self, collection: str) -> int:
        # local ids are negative so they never collide with server ids
        lowest = min((e.record["id"] for e in self._entries(collection)), default=0)
        return min(lowest, 0) - 1

    def _save(self) -> None:
        self.store.save(self.snapshot)
