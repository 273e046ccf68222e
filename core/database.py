import datetime
import logging
import sqlite3
from typing import Dict, Iterable, List, Optional

from core.models import JobTarget, TargetStatus

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = (TargetStatus.APPLIED.value,)


def init_db(conn: sqlite3.Connection):
    """
    Creates the database tables on the given connection.
    """
    logger.debug("Setting up database tables...")
    cursor = conn.cursor()
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS targets (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            company TEXT NOT NULL,
            location TEXT,
            url TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'found',
            status_reason TEXT,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP,
            applied_at TIMESTAMP
        )
    """
    )
    conn.commit()
    logger.info("Database setup complete.")


def setup_database(db_file: str) -> sqlite3.Connection:
    """
    Initializes the database connection and creates tables.
    """
    conn = sqlite3.connect(
        db_file, detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES, check_same_thread=False
    )
    init_db(conn)
    return conn


def save_found_targets(targets: Iterable[JobTarget], conn: sqlite3.Connection) -> int:
    """
    Saves newly found targets; targets already known are ignored.

    Returns:
        Number of inserted rows.
    """
    now = datetime.datetime.now()
    rows = [(t.id, t.title, t.company, t.location, t.url, TargetStatus.FOUND.value, now) for t in targets]
    if not rows:
        return 0
    cursor = conn.cursor()
    cursor.executemany(
        "INSERT OR IGNORE INTO targets (id, title, company, location, url, status, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        rows,
    )
    conn.commit()
    logger.info(f"Saved {cursor.rowcount} new targets. Ignored {len(rows) - cursor.rowcount} duplicates.")
    return cursor.rowcount


def get_targets_by_status(status: TargetStatus, conn: sqlite3.Connection, limit: Optional[int] = None) -> List[JobTarget]:
    """
    Retrieves targets with the given status, oldest first.
    """
    cursor = conn.cursor()
    query = "SELECT id, title, company, location, url FROM targets WHERE status = ? ORDER BY created_at, id"
    params: tuple = (status.value,)
    if limit:
        query += " LIMIT ?"
        params += (limit,)
    cursor.execute(query, params)
    targets = [
        JobTarget(id=row[0], title=row[1], company=row[2], location=row[3], url=row[4])
        for row in cursor.fetchall()
    ]
    logger.info(f"Retrieved {len(targets)} targets with status '{status.value}'.")
    return targets


def get_target_status(target_id: str, conn: sqlite3.Connection) -> Optional[TargetStatus]:
    cursor = conn.cursor()
    cursor.execute("SELECT status FROM targets WHERE id = ?", (target_id,))
    row = cursor.fetchone()
    return TargetStatus(row[0]) if row else None


def update_target_status(
    target_id: str,
    status: TargetStatus,
    conn: sqlite3.Connection,
    reason: Optional[str] = None,
):
    """
    Updates the status of a target.
    If status is 'applied', also sets applied_at to the current timestamp.
    """
    logger.debug(f"Updating status to '{status.value}' for target_id: {target_id}")
    now = datetime.datetime.now()
    cursor = conn.cursor()

    if status == TargetStatus.APPLIED:
        cursor.execute(
            "UPDATE targets SET status = ?, status_reason = NULL, updated_at = ?, applied_at = ? WHERE id = ?",
            (status.value, now, now, target_id),
        )
    else:
        cursor.execute(
            "UPDATE targets SET status = ?, status_reason = ?, updated_at = ? WHERE id = ?",
            (status.value, reason, now, target_id),
        )

    conn.commit()
    if cursor.rowcount == 0:
        logger.warning(f"No target with id {target_id} to update.")


def get_application_stats(conn: sqlite3.Connection) -> Dict[str, int]:
    """Counts targets per status."""
    cursor = conn.cursor()
    cursor.execute("SELECT status, COUNT(*) FROM targets GROUP BY status")
    return {status: count for status, count in cursor.fetchall()}


def count_todays_applications(conn: sqlite3.Connection) -> int:
    cursor = conn.cursor()
    cursor.execute(
        "SELECT COUNT(*) FROM targets WHERE status = ? AND DATE(applied_at) = DATE('now', 'localtime')",
        (TargetStatus.APPLIED.value,),
    )
    return cursor.fetchone()[0]


class SqliteTargetRepository:
    """TargetRepository backed by the targets table."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def mark_applied(self, target_id: str) -> None:
        update_target_status(target_id, TargetStatus.APPLIED, self.conn)

    def mark_skipped(self, target_id: str, reason: str) -> None:
        update_target_status(target_id, TargetStatus.SKIPPED, self.conn, reason=reason)

    def mark_error(self, target_id: str, message: str) -> None:
        update_target_status(target_id, TargetStatus.ERROR, self.conn, reason=message)

    def has_completed(self, target_id: str) -> bool:
        status = get_target_status(target_id, self.conn)
        return status is not None and status.value in COMPLETED_STATUSES
