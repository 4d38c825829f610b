"""Persistence backends for journal data.

Two interchangeable stores expose the same table-oriented interface:

- LocalStore keeps one JSON file per table under a data directory.
- SupabaseStore talks to a hosted Postgres through its PostgREST API.

All journal modules only see the JournalStore interface, so the CLI and the
dashboard work the same against either backend.
"""

import json
import logging
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


class BackendError(Exception):
    """Raised when the storage backend rejects a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(f"[{status}] {message}" if status else message)


class JournalStore(Protocol):
    def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]: ...

    def insert(self, table: str, rows: list[dict]) -> list[dict]: ...

    def update(self, table: str, row_id: str, changes: dict) -> dict: ...

    def delete(
        self,
        table: str,
        row_id: Optional[str] = None,
        filters: Optional[dict] = None,
    ) -> int: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(row: dict, filters: Optional[dict]) -> bool:
    if not filters:
        return True
    return all(row.get(key) == value for key, value in filters.items())


def _sort_key(value):
    # None sorts first; mixed types compare as strings
    return (value is not None, str(value) if value is not None else "")


class LocalStore:
    """JSON-file store, one file per table.

    Writes go to a temp file first and are moved into place, so a crash
    never leaves a half-written table behind.
    """

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _table_path(self, table: str) -> Path:
        return self.data_dir / f"{table}.json"

    def _load(self, table: str) -> list[dict]:
        path = self._table_path(table)
        if not path.exists():
            return []
        try:
            with open(path) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load table {path}: {e}")
            return []

    def _save(self, table: str, rows: list[dict]) -> None:
        path = self._table_path(table)
        temp_path = path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(rows, f, indent=2, default=str)
        temp_path.replace(path)

    def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        """Return rows matching all equality filters.

        Args:
            table: Table name.
            filters: Column -> value equality filters.
            order_by: Optional column to sort by.
            descending: Sort newest/largest first.

        Returns:
            List of row dictionaries (copies).
        """
        with self._lock:
            rows = [dict(row) for row in self._load(table) if _matches(row, filters)]

        if order_by:
            rows.sort(key=lambda row: _sort_key(row.get(order_by)), reverse=descending)

        return rows

    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        """Insert rows, assigning id and timestamps.

        Returns:
            The stored rows.
        """
        timestamp = _now()
        created = []
        for row in rows:
            stored = dict(row)
            stored.setdefault("id", str(uuid.uuid4()))
            stored.setdefault("created_at", timestamp)
            stored["updated_at"] = timestamp
            created.append(stored)

        with self._lock:
            existing = self._load(table)
            existing.extend(created)
            self._save(table, existing)

        logger.debug(f"Inserted {len(created)} row(s) into {table}")
        return [dict(row) for row in created]

    def update(self, table: str, row_id: str, changes: dict) -> dict:
        """Apply changes to a single row.

        Raises:
            BackendError: If the row does not exist.
        """
        with self._lock:
            rows = self._load(table)
            for row in rows:
                if row.get("id") == row_id:
                    row.update(changes)
                    row["updated_at"] = _now()
                    self._save(table, rows)
                    return dict(row)

        raise BackendError(f"No row {row_id} in {table}", status=404)

    def delete(
        self,
        table: str,
        row_id: Optional[str] = None,
        filters: Optional[dict] = None,
    ) -> int:
        """Delete by id and/or filters.

        Returns:
            Number of rows removed.
        """
        criteria = dict(filters or {})
        if row_id is not None:
            criteria["id"] = row_id
        if not criteria:
            raise ValueError("delete requires row_id or filters")

        with self._lock:
            rows = self._load(table)
            kept = [row for row in rows if not _matches(row, criteria)]
            removed = len(rows) - len(kept)
            if removed:
                self._save(table, kept)

        return removed


class SupabaseStore:
    """PostgREST client for a Supabase project.

    Row-level security on the server scopes data to the signed-in user; the
    access token (if any) is sent as the bearer token.
    """

    def __init__(self, url: str, api_key: str, access_token: Optional[str] = None):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self._session = requests.Session()
        self._session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        })

    def _request(self, method: str, table: str, params: Optional[dict] = None, payload=None):
        url = f"{self.base_url}/{table}"
        try:
            resp = self._session.request(
                method,
                url,
                params=params,
                json=payload,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise BackendError(f"{method} {table} failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            try:
                message = resp.json().get("message", resp.text)
            except ValueError:
                message = resp.text
            raise BackendError(message, status=resp.status_code)

        if not resp.content:
            return []
        return resp.json()

    @staticmethod
    def _filter_params(filters: Optional[dict]) -> dict:
        params = {}
        for key, value in (filters or {}).items():
            if value is None:
                params[key] = "is.null"
            elif isinstance(value, bool):
                params[key] = f"eq.{str(value).lower()}"
            else:
                params[key] = f"eq.{value}"
        return params

    def select(
        self,
        table: str,
        filters: Optional[dict] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        params = {"select": "*", **self._filter_params(filters)}
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        return self._request("GET", table, params=params)

    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        return self._request("POST", table, payload=rows)

    def update(self, table: str, row_id: str, changes: dict) -> dict:
        rows = self._request("PATCH", table, params={"id": f"eq.{row_id}"}, payload=changes)
        if not rows:
            raise BackendError(f"No row {row_id} in {table}", status=404)
        return rows[0]

    def delete(
        self,
        table: str,
        row_id: Optional[str] = None,
        filters: Optional[dict] = None,
    ) -> int:
        params = self._filter_params(filters)
        if row_id is not None:
            params["id"] = f"eq.{row_id}"
        if not params:
            raise ValueError("delete requires row_id or filters")
        return len(self._request("DELETE", table, params=params))


def create_store(config: dict) -> JournalStore:
    """Build the configured storage backend.

    Supports environment variable overrides:
    - SUPABASE_URL: Override storage.supabase.url
    - SUPABASE_ANON_KEY: Override storage.supabase.api_key
    - SUPABASE_ACCESS_TOKEN: User session token

    Args:
        config: Configuration dictionary.

    Returns:
        LocalStore or SupabaseStore.

    Raises:
        ValueError: If the backend is unknown or misconfigured.
    """
    storage_config = config.get("storage", {})
    backend = storage_config.get("backend", "local")

    if backend == "local":
        data_dir = storage_config.get("data_dir") or config.get("paths", {}).get("data", "data")
        logger.info(f"Using local store at {data_dir}")
        return LocalStore(data_dir)

    if backend == "supabase":
        supabase_config = storage_config.get("supabase", {})
        url = os.environ.get("SUPABASE_URL", supabase_config.get("url"))
        api_key = os.environ.get("SUPABASE_ANON_KEY", supabase_config.get("api_key"))
        if not url or not api_key:
            raise ValueError("Supabase backend requires SUPABASE_URL and SUPABASE_ANON_KEY")
        token = os.environ.get("SUPABASE_ACCESS_TOKEN", supabase_config.get("access_token"))
        logger.info(f"Using Supabase store at {url}")
        return SupabaseStore(url, api_key, access_token=token)

    raise ValueError(f"Unknown storage backend: {backend}")
