# store.py — HealthPulse Collect
# Record store: insert / select / delete over the survey collections.
# Two backends share one surface: the local sqlite file (db.py) and the
# hosted service's REST endpoint.

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

import requests

import config
from db import get_conn, init_db, _cols

logger = logging.getLogger(__name__)

# Postgres unique_violation; the sqlite backend reports the same code.
UNIQUE_VIOLATION = "23505"

TABLES = (
    "general_surveys",
    "anc_surveys",
    "households",
    "household_members",
    "admin_portal",
)

JSON_COLUMNS = {"diseases"}
BOOL_COLUMNS = {"is_pregnant"}


class StoreError(Exception):
    """The record store could not be reached or rejected the call."""

    def __init__(self, message: str, code: str = "", table: str = ""):
        super().__init__(message)
        self.message = message
        self.code = code or ""
        self.table = table or ""


class StoreConflictError(StoreError):
    """A uniqueness constraint rejected an insert."""


def _now() -> str:
    # microseconds keep creation order stable for rows written in the same second
    return datetime.now().isoformat(timespec="microseconds")


def _check_table(table: str) -> str:
    if table not in TABLES:
        raise StoreError(f"Unknown collection: {table}", table=table)
    return table


class RecordStore:
    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def delete(self, table: str, row_id: Any) -> None:
        raise NotImplementedError

    def select_one(self, table: str, filters: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters=filters, order_by="id", limit=1)
        return rows[0] if rows else None

    def select_recent(self, table: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.select(table, order_by="created_at", descending=True, limit=limit)


# -------------------------
# sqlite backend
# -------------------------

def _encode(col: str, value: Any) -> Any:
    if col in JSON_COLUMNS and value is not None and not isinstance(value, str):
        return json.dumps(list(value))
    if col in BOOL_COLUMNS:
        return 1 if value else 0
    return value


def _decode(row: sqlite3.Row) -> Dict[str, Any]:
    out = dict(row)
    for col in JSON_COLUMNS:
        raw = out.get(col)
        if isinstance(raw, str):
            try:
                out[col] = json.loads(raw)
            except ValueError:
                out[col] = [raw] if raw else []
    for col in BOOL_COLUMNS:
        if col in out:
            out[col] = bool(out[col])
    return out


class SqliteRecordStore(RecordStore):
    def __init__(self, path: Optional[str] = None):
        self.path = path or config.DB_PATH
        init_db(self.path)
        self._columns: Dict[str, List[str]] = {}

    def columns(self, table: str) -> List[str]:
        if table not in self._columns:
            with get_conn(self.path) as conn:
                self._columns[table] = _cols(conn, table)
        return self._columns[table]

    def _where(self, table: str, filters: Optional[Mapping[str, Any]]):
        cols = self.columns(table)
        where: List[str] = []
        params: List[Any] = []
        for col, value in (filters or {}).items():
            if col not in cols:
                raise StoreError(f"Unknown column {col} on {table}", table=table)
            if isinstance(value, (list, tuple, set)):
                values = list(value)
                if not values:
                    return None, None
                where.append(f"{col} IN ({','.join(['?'] * len(values))})")
                params.extend(_encode(col, v) for v in values)
            elif value is None:
                where.append(f"{col} IS NULL")
            else:
                where.append(f"{col}=?")
                params.append(_encode(col, value))
        return ("WHERE " + " AND ".join(where)) if where else "", params

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        _check_table(table)
        cols = self.columns(table)
        data = {k: v for k, v in dict(row).items() if k != "id"}
        unknown = [k for k in data if k not in cols]
        if unknown:
            raise StoreError(f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}", table=table)
        if "created_at" in cols and not data.get("created_at"):
            data["created_at"] = _now()
        fields = list(data.keys())
        placeholders = ",".join(["?"] * len(fields))
        try:
            with get_conn(self.path) as conn:
                cur = conn.cursor()
                cur.execute(
                    f"INSERT INTO {table} ({', '.join(fields)}) VALUES ({placeholders})",
                    tuple(_encode(f, data[f]) for f in fields),
                )
                new_id = int(cur.lastrowid)
                conn.commit()
                cur.execute(f"SELECT * FROM {table} WHERE id=? LIMIT 1", (new_id,))
                stored = cur.fetchone()
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc).upper():
                logger.warning("Uniqueness conflict on %s: %s", table, exc)
                raise StoreConflictError(str(exc), code=UNIQUE_VIOLATION, table=table) from exc
            logger.error("Integrity error on %s: %s", table, exc)
            raise StoreError(str(exc), code="23000", table=table) from exc
        except sqlite3.Error as exc:
            logger.error("Insert into %s failed: %s", table, exc)
            raise StoreError(str(exc), table=table) from exc
        return _decode(stored)

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        _check_table(table)
        where_sql, params = self._where(table, filters)
        if where_sql is None:
            return []
        direction = "DESC" if descending else "ASC"
        order_sql = ""
        if order_by:
            if order_by not in self.columns(table):
                raise StoreError(f"Unknown column {order_by} on {table}", table=table)
            order_sql = f"ORDER BY {order_by} {direction}"
            if order_by != "id":
                order_sql += f", id {direction}"
        limit_sql = ""
        if limit is not None:
            limit_sql = "LIMIT ?"
            params.append(int(limit))
        try:
            with get_conn(self.path) as conn:
                cur = conn.cursor()
                cur.execute(f"SELECT * FROM {table} {where_sql} {order_sql} {limit_sql}", tuple(params))
                rows = cur.fetchall()
        except sqlite3.Error as exc:
            logger.error("Select from %s failed: %s", table, exc)
            raise StoreError(str(exc), table=table) from exc
        return [_decode(r) for r in rows]

    def delete(self, table: str, row_id: Any) -> None:
        _check_table(table)
        try:
            with get_conn(self.path) as conn:
                cur = conn.execute(f"DELETE FROM {table} WHERE id=?", (int(row_id),))
                conn.commit()
                removed = cur.rowcount
        except sqlite3.Error as exc:
            logger.error("Delete from %s failed: %s", table, exc)
            raise StoreError(str(exc), table=table) from exc
        if not removed:
            logger.error("Delete from %s removed no row for id=%s", table, row_id)
            raise StoreError(f"Delete from {table} removed no row (id={row_id})", table=table)


# -------------------------
# hosted REST backend
# -------------------------

def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _quoted(values: Iterable[Any]) -> str:
    parts = []
    for v in values:
        if isinstance(v, str):
            parts.append('"' + v.replace('"', '\\"') + '"')
        else:
            parts.append(_literal(v))
    return ",".join(parts)


class SupabaseRecordStore(RecordStore):
    def __init__(
        self,
        url: str,
        key: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = f"{(url or '').rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": key or "",
                "Authorization": f"Bearer {key or ''}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        _check_table(table)
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Record store unreachable (%s %s): %s", method, table, exc)
            raise StoreError(f"Record store unreachable: {exc}", table=table) from exc
        if resp.status_code >= 400:
            code = ""
            message = ""
            try:
                payload = resp.json()
                if isinstance(payload, dict):
                    code = str(payload.get("code") or "")
                    message = payload.get("message") or payload.get("details") or ""
            except ValueError:
                message = (resp.text or "").strip()
            message = message or f"Record store returned {resp.status_code}"
            if code == UNIQUE_VIOLATION or (resp.status_code == 409 and not code):
                logger.warning("Uniqueness conflict on %s: %s", table, message)
                raise StoreConflictError(message, code=UNIQUE_VIOLATION, table=table)
            logger.error("Record store error on %s (%s): %s", table, resp.status_code, message)
            raise StoreError(message, code=code, table=table)
        return resp

    def _params(self, filters: Optional[Mapping[str, Any]]) -> Optional[Dict[str, str]]:
        params: Dict[str, str] = {}
        for col, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                values = list(value)
                if not values:
                    return None
                params[col] = f"in.({_quoted(values)})"
            elif value is None:
                params[col] = "is.null"
            else:
                params[col] = f"eq.{_literal(value)}"
        return params

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        data = {k: v for k, v in dict(row).items() if k != "id"}
        resp = self._request(
            "POST",
            table,
            body=[data],
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json() or []
        if not rows:
            raise StoreError(f"Insert into {table} returned no row", table=table)
        return rows[0]

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = self._params(filters)
        if params is None:
            return []
        params["select"] = "*"
        if order_by:
            direction = "desc" if descending else "asc"
            params["order"] = f"{order_by}.{direction}"
            if order_by != "id":
                params["order"] += f",id.{direction}"
        if limit is not None:
            params["limit"] = str(int(limit))
        resp = self._request("GET", table, params=params)
        return list(resp.json() or [])

    def delete(self, table: str, row_id: Any) -> None:
        resp = self._request(
            "DELETE",
            table,
            params={"id": f"eq.{_literal(row_id)}"},
            headers={"Prefer": "return=representation"},
        )
        try:
            deleted = resp.json() or []
        except ValueError:
            deleted = []
        # row-level security answers 2xx with an empty body when nothing was removed
        if not deleted:
            logger.error("Delete from %s removed no row for id=%s", table, row_id)
            raise StoreError(f"Delete from {table} removed no row (id={row_id})", table=table)


def get_store() -> RecordStore:
    backend = config.STORE_BACKEND
    if backend == "supabase":
        if not config.SUPABASE_URL or not config.SUPABASE_ANON_KEY:
            # Startup continues; every store call will fail until configured.
            logger.critical("CRITICAL: record store credentials missing (SUPABASE_URL / SUPABASE_ANON_KEY)")
        return SupabaseRecordStore(config.SUPABASE_URL, config.SUPABASE_ANON_KEY, timeout=config.STORE_TIMEOUT)
    if backend != "sqlite":
        logger.warning("Unknown HEALTHPULSE_STORE=%r, falling back to sqlite", backend)
    return SqliteRecordStore(config.DB_PATH)
