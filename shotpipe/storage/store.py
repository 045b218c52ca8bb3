import json
import os
import re
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional


def _repo_root() -> Path:
    # shotpipe/storage/store.py -> shotpipe/storage -> shotpipe -> repo root
    return Path(__file__).resolve().parents[2]


def default_db_path() -> Path:
    return _repo_root() / "projects" / "projects.db"


def _safe_project_id(project_id: str) -> str:
    project_id = (project_id or "").strip()
    if not project_id:
        raise ValueError("project_id must be non-empty")
    return project_id


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
  project_id TEXT PRIMARY KEY,
  title TEXT NOT NULL DEFAULT '',
  snapshot_json TEXT NOT NULL,       -- camelCase Project snapshot
  created_at REAL NOT NULL,
  updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_projects_updated ON projects(updated_at);
"""


@dataclass
class ProjectSnapshotStore:
    """SQLite table of whole-project JSON snapshots, one row per project."""

    db_path: Path
    conn: sqlite3.Connection

    @classmethod
    def open(cls, db_path: Optional[os.PathLike] = None) -> "ProjectSnapshotStore":
        path = Path(db_path) if db_path is not None else default_db_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")

        store = cls(db_path=path, conn=conn)
        store._ensure_schema()
        return store

    def close(self) -> None:
        self.conn.close()

    def _ensure_schema(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.execute("INSERT OR IGNORE INTO meta(key, value) VALUES(?, ?)", ("schema_version", "1"))

    def schema_version(self) -> int:
        row = self.conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        return int(row["value"]) if row else 0

    def _now(self) -> float:
        return time.time()

    def put(self, project_id: str, snapshot: Dict[str, Any]) -> None:
        pid = _safe_project_id(project_id)
        ts = self._now()
        self.conn.execute(
            """
            INSERT INTO projects(project_id, title, snapshot_json, created_at, updated_at)
            VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(project_id)
            DO UPDATE SET title=excluded.title, snapshot_json=excluded.snapshot_json, updated_at=excluded.updated_at
            """,
            (pid, str(snapshot.get("title") or ""), json.dumps(snapshot, ensure_ascii=False), ts, ts),
        )

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            "SELECT snapshot_json FROM projects WHERE project_id=?",
            (_safe_project_id(project_id),),
        ).fetchone()
        return json.loads(row["snapshot_json"]) if row else None

    def list_projects(self) -> List[Dict[str, Any]]:
        cur = self.conn.execute(
            "SELECT project_id, title, created_at, updated_at FROM projects ORDER BY updated_at DESC"
        )
        return [dict(r) for r in cur.fetchall()]

    def delete(self, project_id: str) -> bool:
        cur = self.conn.execute("DELETE FROM projects WHERE project_id=?", (_safe_project_id(project_id),))
        return cur.rowcount > 0
