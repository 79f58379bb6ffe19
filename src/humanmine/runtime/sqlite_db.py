# src/humanmine/runtime/sqlite_db.py
from __future__ import annotations

import copy
import json
import os
import random
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

Json = Dict[str, Any]
T = TypeVar("T")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding of the ledger snapshot.

    Unknown types are not coerced (no default=str): a non-JSON value leaking into
    state must fail the write.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for the mining ledger.

    Design goals:
      - single durable DB file for the ledger snapshot
      - cross-process safe (SQLite locks)
      - cross-thread safe by never sharing connections

    SQLite allows only one writer at a time. Under multi-process workloads,
    BEGIN IMMEDIATE can transiently fail with "database is locked", so
    write_tx() retries with bounded backoff.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """PRAGMA synchronous: FULL in prod, NORMAL otherwise; HUMANMINE_SQLITE_SYNCHRONOUS overrides."""
        mode = (os.environ.get("HUMANMINE_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("HUMANMINE_SQLITE_SYNCHRONOUS") or default).strip().upper()

        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        p = Path(self.path)
        p.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("HUMANMINE_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        con.execute("PRAGMA journal_mode=WAL;")
        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("HUMANMINE_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  seq INTEGER NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise (fail closed)
          - any exception inside the block rolls back
        """
        deadline_ms = max(250, _env_int("HUMANMINE_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("HUMANMINE_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("HUMANMINE_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except BaseException:
                con.execute("ROLLBACK;")
                raise


class SqliteLedgerStore:
    """Ledger snapshot store persisted in SQLite.

      - read(): load latest snapshot
      - write(st): overwrite the snapshot atomically
      - update(mut): read-modify-write inside one write transaction; if mut raises,
        nothing is written and the exception propagates

    The authoritative snapshot is a single row; `seq` counts committed updates.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM ledger_state WHERE id=1;").fetchone() is not None

    @staticmethod
    def _load(row: Optional[sqlite3.Row]) -> Json:
        if row is None:
            raise FileNotFoundError("sqlite ledger_state is missing")
        st = json.loads(str(row["state_json"]))
        if not isinstance(st, dict):
            raise ValueError("ledger_state is not a JSON object")
        return st

    def read(self) -> Json:
        with self._db.connection() as con:
            return self._load(con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone())

    def seq(self) -> int:
        with self._db.connection() as con:
            row = con.execute("SELECT seq FROM ledger_state WHERE id=1;").fetchone()
            return int(row["seq"]) if row is not None else 0

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        payload = _canon_json(st)
        with self._db.write_tx() as con:
            con.execute(
                """
                INSERT INTO ledger_state(id, seq, state_json, updated_ts_ms)
                VALUES(1, 0, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  seq=ledger_state.seq + 1,
                  state_json=excluded.state_json,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (payload, _now_ms()),
            )

    def update(self, mut: Callable[[Json], T]) -> T:
        with self._db.write_tx() as con:
            st = self._load(con.execute("SELECT state_json FROM ledger_state WHERE id=1;").fetchone())
            out = mut(st)
            con.execute(
                "UPDATE ledger_state SET seq=seq+1, state_json=?, updated_ts_ms=? WHERE id=1;",
                (_canon_json(st), _now_ms()),
            )
            return out


class MemoryLedgerStore:
    """In-process store with the SqliteLedgerStore interface.

    update() runs the mutator on a deep copy and swaps it in only on success.
    """

    def __init__(self, initial: Optional[Json] = None) -> None:
        self._lock = threading.RLock()
        self._state: Optional[Json] = copy.deepcopy(initial) if initial is not None else None
        self._seq = 0

    def exists(self) -> bool:
        return self._state is not None

    def read(self) -> Json:
        with self._lock:
            if self._state is None:
                raise FileNotFoundError("memory ledger_state is missing")
            return copy.deepcopy(self._state)

    def seq(self) -> int:
        return self._seq

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("ledger write expects dict")
        # Round-trip through JSON so both stores reject the same values.
        frozen = json.loads(_canon_json(st))
        with self._lock:
            if self._state is not None:
                self._seq += 1
            self._state = frozen

    def update(self, mut: Callable[[Json], T]) -> T:
        with self._lock:
            st = self.read()
            out = mut(st)
            self._state = json.loads(_canon_json(st))
            self._seq += 1
            return out


__all__ = ["MemoryLedgerStore", "SqliteDB", "SqliteLedgerStore"]
