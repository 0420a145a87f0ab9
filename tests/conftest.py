from typing import Any, Dict, List, Optional, Tuple

import pytest

from app import app as flask_app
from store import RecordStore, SqliteRecordStore, StoreError


class RecordingStore(RecordStore):
    """Wraps a real store, records every call and can fail on demand."""

    def __init__(self, inner: RecordStore):
        self.inner = inner
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[Tuple[str, str], List[Any]] = {}

    def fail(self, op: str, table: str, after: int = 0, error: Optional[Exception] = None) -> None:
        # the first `after` matching calls succeed, every later one raises
        self._failures[(op, table)] = [after, error or StoreError("connection reset", table=table)]

    def _check(self, op: str, table: str) -> None:
        rule = self._failures.get((op, table))
        if rule is None:
            return
        if rule[0] <= 0:
            raise rule[1]
        rule[0] -= 1

    def insert(self, table, row):
        self.calls.append(("insert", table))
        self._check("insert", table)
        return self.inner.insert(table, row)

    def select(self, table, filters=None, order_by=None, descending=False, limit=None):
        self.calls.append(("select", table))
        self._check("select", table)
        return self.inner.select(table, filters=filters, order_by=order_by, descending=descending, limit=limit)

    def delete(self, table, row_id):
        self.calls.append(("delete", table))
        self._check("delete", table)
        return self.inner.delete(table, row_id)

    def count(self, op: str, table: str) -> int:
        return sum(1 for c in self.calls if c == (op, table))


@pytest.fixture
def sqlite_store(tmp_path):
    return SqliteRecordStore(str(tmp_path / "healthpulse-test.db"))


@pytest.fixture
def store(sqlite_store):
    return RecordingStore(sqlite_store)


@pytest.fixture
def client(store):
    flask_app.config.update(TESTING=True, RECORD_STORE=store)
    with flask_app.test_client() as c:
        yield c
    flask_app.config.pop("RECORD_STORE", None)


@pytest.fixture
def admin_client(client, sqlite_store):
    sqlite_store.insert("admin_portal", {"username": "admin", "password": "s3cret-pass"})
    resp = client.post("/api/admin/login", json={"username": "admin", "password": "s3cret-pass"})
    assert resp.status_code == 200
    return client


def member_payload(name: str, adhar: str, **extra) -> Dict[str, Any]:
    data = {
        "full_name": name,
        "dob": "1990-01-01",
        "gender": "Male",
        "adhar_number": adhar,
        "relation_to_head": "Self",
        "education": "Primary",
        "caste": "General",
        "diseases": ["None"],
    }
    data.update(extra)
    return data


def household_payload(members: List[Dict[str, Any]], **extra) -> Dict[str, Any]:
    data = {
        "village_name": "Rampur",
        "house_number": "12",
        "mobile_no": "98765-43210",
        "boys_0_5": 1,
        "girls_6_14": 2,
        "members": members,
    }
    data.update(extra)
    return data


def general_payload(name: str = "Asha Devi", adhar: str = "123412341234", **extra) -> Dict[str, Any]:
    data = {
        "full_name": name,
        "dob": "1995-03-10",
        "age": 29,
        "gender": "Female",
        "adhar_number": adhar,
        "diseases": ["Thyroid"],
        "education": "Secondary",
        "caste": "OBC",
        "pregnant_woman_present": "Yes",
        "mobile_no": "9876543210",
        "kids_info": "1 girl, 4 years",
    }
    data.update(extra)
    return data


def anc_payload(**extra) -> Dict[str, Any]:
    data = {
        "lmp_date": "2024-03-01",
        "pregnancy_month": 4,
        "anc_visits": 2,
        "children_no": 1,
    }
    data.update(extra)
    return data
