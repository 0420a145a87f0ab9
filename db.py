# db.py — HealthPulse Collect
# Local sqlite record store: connection + schema bootstrap

import os
import sqlite3
from typing import List, Optional

try:
    from config import DB_PATH
except ImportError:
    DB_PATH = os.environ.get("HEALTHPULSE_DB_PATH", "healthpulse.db")


def get_conn(path: Optional[str] = None) -> sqlite3.Connection:
    path = path or DB_PATH
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    cur = conn.cursor()
    cur.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=? LIMIT 1",
        (table,),
    )
    return cur.fetchone() is not None


def _cols(conn: sqlite3.Connection, table: str) -> List[str]:
    cur = conn.cursor()
    cur.execute(f"PRAGMA table_info({table})")
    return [r["name"] for r in cur.fetchall()]


def _add_column_if_missing(conn: sqlite3.Connection, table: str, col_def_sql: str) -> None:
    """
    col_def_sql example: "household_id INTEGER"
    """
    col_name = col_def_sql.strip().split()[0]
    existing = _cols(conn, table)
    if col_name in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {col_def_sql}")


def init_db(path: Optional[str] = None) -> None:
    """
    Safe init:
    - Creates tables if missing
    - Adds new columns if missing
    - Adds indexes
    """
    with get_conn(path) as conn:
        cur = conn.cursor()

        # -----------------------------
        # Flat survey tables
        # -----------------------------
        if not _table_exists(conn, "general_surveys"):
            cur.execute(
                """
                CREATE TABLE general_surveys (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  full_name TEXT,
                  dob TEXT,
                  age INTEGER,
                  gender TEXT,
                  adhar_number TEXT,
                  diseases TEXT,
                  education TEXT,
                  caste TEXT,
                  pregnant_woman_present TEXT DEFAULT 'No',
                  mobile_no TEXT,
                  kids_info TEXT,
                  household_id INTEGER,
                  member_id INTEGER,
                  created_at TEXT
                )
                """
            )
        else:
            # general-health mirror rows written by the household registry
            _add_column_if_missing(conn, "general_surveys", "household_id INTEGER")
            _add_column_if_missing(conn, "general_surveys", "member_id INTEGER")

        if not _table_exists(conn, "anc_surveys"):
            cur.execute(
                """
                CREATE TABLE anc_surveys (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  -- legacy flat schema: demographics inline
                  full_name TEXT,
                  dob TEXT,
                  age INTEGER,
                  gender TEXT,
                  adhar_number TEXT,
                  diseases TEXT,
                  education TEXT,
                  caste TEXT,
                  mobile_no TEXT,
                  -- normalized schema: reference to a household member
                  member_id INTEGER,
                  household_id INTEGER,
                  lmp_date TEXT,
                  children_no INTEGER,
                  pregnancy_month INTEGER,
                  anc_visits INTEGER,
                  tetanus_injection TEXT DEFAULT 'No',
                  iron_supplements TEXT DEFAULT 'No',
                  sam_status TEXT DEFAULT 'No',
                  mam_status TEXT DEFAULT 'No',
                  thalassemia_status TEXT DEFAULT 'No',
                  created_at TEXT
                )
                """
            )
        else:
            _add_column_if_missing(conn, "anc_surveys", "member_id INTEGER")
            _add_column_if_missing(conn, "anc_surveys", "household_id INTEGER")

        # -----------------------------
        # Household registry
        # -----------------------------
        if not _table_exists(conn, "households"):
            cur.execute(
                """
                CREATE TABLE households (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  village_name TEXT NOT NULL,
                  house_number TEXT NOT NULL,
                  head_name TEXT,
                  mobile_no TEXT,
                  boys_0_5 INTEGER NOT NULL DEFAULT 0,
                  girls_0_5 INTEGER NOT NULL DEFAULT 0,
                  boys_6_14 INTEGER NOT NULL DEFAULT 0,
                  girls_6_14 INTEGER NOT NULL DEFAULT 0,
                  boys_15_18 INTEGER NOT NULL DEFAULT 0,
                  girls_15_18 INTEGER NOT NULL DEFAULT 0,
                  created_at TEXT
                )
                """
            )

        if not _table_exists(conn, "household_members"):
            cur.execute(
                """
                CREATE TABLE household_members (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  household_id INTEGER NOT NULL,
                  full_name TEXT NOT NULL,
                  dob TEXT,
                  age INTEGER,
                  gender TEXT,
                  adhar_number TEXT UNIQUE,
                  relation_to_head TEXT,
                  education TEXT,
                  caste TEXT,
                  diseases TEXT,
                  is_pregnant INTEGER NOT NULL DEFAULT 0,
                  created_at TEXT,
                  FOREIGN KEY(household_id) REFERENCES households(id) ON DELETE CASCADE
                )
                """
            )

        # -----------------------------
        # Admin credentials (plaintext, exact match)
        # -----------------------------
        if not _table_exists(conn, "admin_portal"):
            cur.execute(
                """
                CREATE TABLE admin_portal (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  username TEXT NOT NULL UNIQUE,
                  password TEXT NOT NULL,
                  created_at TEXT
                )
                """
            )

        # -----------------------------
        # INDEXES
        # -----------------------------
        cur.execute("CREATE INDEX IF NOT EXISTS idx_general_created ON general_surveys(created_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_anc_created ON anc_surveys(created_at)")
        # One normalized ANC record per member; legacy rows carry NULL and stay unconstrained.
        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_anc_member ON anc_surveys(member_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_households_village ON households(village_name)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_members_household ON household_members(household_id)")

        conn.commit()
