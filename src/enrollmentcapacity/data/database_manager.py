"""
Database manager for handling SQLite operations for enrollment capacity data.

This module is the persistent store behind the waitlist manager, the
enrollment coordinator and the section planner. It keeps classes, waitlist
entries, offer notifications, enrollments, approval requests, invitations and
an audit trail in one SQLite database.

Every write that changes waitlist positions or class enrollment runs inside a
single ``BEGIN IMMEDIATE`` transaction, and ``UNIQUE(class_id, position)``
rejects duplicate positions even when several processes share the file.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pandas as pd

from ..config import get_setting
from ..core import get_logger
from ..core.exceptions import (
    AlreadyEnrolledError,
    ClassFullError,
    ClassNotFoundError,
    DuplicateEntryError,
    EnrollmentCapacityError,
    NotFoundError,
    StoreError,
    WaitlistFullError,
)
from ..models import (
    AuditAction,
    ClassCapacity,
    ClassInvitation,
    ClassRecord,
    Enrollment,
    EnrollmentRequest,
    EnrollmentRequestStatus,
    EnrollmentStatus,
    EnrollmentType,
    NotificationType,
    WaitlistEntry,
    WaitlistNotification,
    WaitlistResponse,
)
from ..utils import (
    calculate_enrollment_probability,
    calculate_insert_position,
    format_timestamp,
    get_waitlist_sort_key,
    is_contiguous,
    parse_timestamp,
    utc_now,
)
from ..validation import validate_directory_exists

WAITLIST_SYSTEM = "waitlist_system"

_TABLES = (
    "classes",
    "instructors",
    "waitlist_entries",
    "waitlist_notifications",
    "enrollments",
    "enrollment_requests",
    "class_invitations",
    "enrollment_audit_log",
)

_CLASS_COLUMNS = """
    c.class_id, c.name, c.code, c.course_code, c.department_id, c.capacity,
    c.current_enrollment, c.waitlist_capacity, c.enrollment_type, c.instructor_id,
    (SELECT COUNT(*) FROM waitlist_entries w WHERE w.class_id = c.class_id)
        AS waitlist_count
"""

_NOTIFICATION_COLUMNS = """
    n.id, n.waitlist_entry_id, n.student_id, n.class_id, n.notification_type,
    n.sent_at, n.response_deadline, n.responded, n.response, n.response_at,
    c.name AS class_name, c.code AS class_code
"""


def _new_id() -> str:
    return str(uuid.uuid4())


class DatabaseManager:
    """Manages SQLite database operations for enrollment capacity data."""

    def __init__(self, db_path: Optional[str] = None, timeout: float = 30.0):
        """
        Initialize database manager.

        Args:
            db_path: Optional path to database file. If None, uses config default.
            timeout: Seconds a writer waits for the database lock.
        """
        if db_path is None:
            data_dir = get_setting("directories", "data_storage", "./data")
            validate_directory_exists(data_dir, create_if_missing=True)
            filename = get_setting("database", "filename", "enrollment_capacity.db")
            self.db_path = Path(data_dir) / filename
        else:
            self.db_path = Path(db_path)

        self.timeout = timeout

        # Ensure parent directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.logger = get_logger(__name__)

        self._init_database()

    # =========================================================================
    # Connections and transactions
    # =========================================================================

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database connections with proper error handling.

        Connections run in autocommit mode; use ``transaction`` for writes
        that must be atomic.

        Yields:
            sqlite3.Connection: Database connection

        Raises:
            StoreError: Wrapping any sqlite3.Error
        """
        conn = None
        try:
            conn = sqlite3.connect(
                self.db_path, timeout=self.timeout, isolation_level=None
            )
            conn.row_factory = sqlite3.Row  # Enable column access by name
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except EnrollmentCapacityError:
            raise
        except sqlite3.Error as e:
            self.logger.error(f"Database error: {e}")
            raise StoreError(f"Database error: {e}") from e
        except Exception as e:
            self.logger.error(f"Unexpected error in database connection: {e}")
            raise
        finally:
            if conn:
                conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run the enclosed statements as one ``BEGIN IMMEDIATE`` transaction.

        The write lock is taken up front, so concurrent writers queue on the
        database instead of failing on upgrade. Any exception rolls back.
        """
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    def _init_database(self):
        """Initialize database schema if it doesn't exist."""
        try:
            with self.get_connection() as conn:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.executescript("""
                    CREATE TABLE IF NOT EXISTS classes (
                        class_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        code TEXT,
                        course_code TEXT,
                        department_id TEXT,
                        capacity INTEGER NOT NULL CHECK (capacity >= 0),
                        current_enrollment INTEGER NOT NULL DEFAULT 0
                            CHECK (current_enrollment >= 0),
                        waitlist_capacity INTEGER NOT NULL DEFAULT 10
                            CHECK (waitlist_capacity >= 0),
                        enrollment_type TEXT NOT NULL DEFAULT 'open'
                            CHECK (enrollment_type IN ('open', 'restricted', 'invitation_only')),
                        instructor_id TEXT,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE TABLE IF NOT EXISTS instructors (
                        instructor_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        department_id TEXT,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE TABLE IF NOT EXISTS waitlist_entries (
                        id TEXT PRIMARY KEY,
                        student_id TEXT NOT NULL,
                        class_id TEXT NOT NULL,
                        position INTEGER NOT NULL CHECK (position != 0),
                        priority INTEGER NOT NULL DEFAULT 0,
                        added_at TEXT NOT NULL,
                        notified_at TEXT,
                        notification_expires_at TEXT,
                        estimated_probability REAL NOT NULL DEFAULT 0,
                        FOREIGN KEY (class_id) REFERENCES classes (class_id),
                        UNIQUE (student_id, class_id),
                        UNIQUE (class_id, position)
                    );

                    -- No foreign key to waitlist_entries: offer history
                    -- outlives the entry it was sent for.
                    CREATE TABLE IF NOT EXISTS waitlist_notifications (
                        id TEXT PRIMARY KEY,
                        waitlist_entry_id TEXT NOT NULL,
                        student_id TEXT NOT NULL,
                        class_id TEXT NOT NULL,
                        notification_type TEXT NOT NULL,
                        sent_at TEXT NOT NULL,
                        response_deadline TEXT,
                        responded INTEGER NOT NULL DEFAULT 0,
                        response TEXT
                            CHECK (response IS NULL OR response IN ('accept', 'decline', 'no_response')),
                        response_at TEXT
                    );

                    CREATE TABLE IF NOT EXISTS enrollments (
                        id TEXT PRIMARY KEY,
                        student_id TEXT NOT NULL,
                        class_id TEXT NOT NULL,
                        status TEXT NOT NULL
                            CHECK (status IN ('enrolled', 'pending', 'waitlisted', 'dropped')),
                        enrolled_by TEXT,
                        enrolled_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        drop_reason TEXT,
                        FOREIGN KEY (class_id) REFERENCES classes (class_id)
                    );

                    CREATE TABLE IF NOT EXISTS enrollment_requests (
                        id TEXT PRIMARY KEY,
                        student_id TEXT NOT NULL,
                        class_id TEXT NOT NULL,
                        justification TEXT,
                        status TEXT NOT NULL DEFAULT 'pending'
                            CHECK (status IN ('pending', 'approved', 'denied', 'expired', 'cancelled')),
                        priority INTEGER NOT NULL DEFAULT 0,
                        requested_at TEXT NOT NULL,
                        expires_at TEXT NOT NULL,
                        reviewed_at TEXT,
                        reviewed_by TEXT,
                        review_notes TEXT,
                        FOREIGN KEY (class_id) REFERENCES classes (class_id)
                    );

                    CREATE TABLE IF NOT EXISTS class_invitations (
                        id TEXT PRIMARY KEY,
                        class_id TEXT NOT NULL,
                        student_id TEXT NOT NULL,
                        invited_by TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        expires_at TEXT NOT NULL,
                        accepted_at TEXT,
                        declined_at TEXT,
                        FOREIGN KEY (class_id) REFERENCES classes (class_id)
                    );

                    CREATE TABLE IF NOT EXISTS enrollment_audit_log (
                        audit_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        student_id TEXT NOT NULL,
                        class_id TEXT NOT NULL,
                        action TEXT NOT NULL,
                        performed_by TEXT,
                        details TEXT,
                        created_at TEXT NOT NULL
                    );

                    CREATE UNIQUE INDEX IF NOT EXISTS idx_enrollments_active
                    ON enrollments (student_id, class_id) WHERE status != 'dropped';

                    CREATE UNIQUE INDEX IF NOT EXISTS idx_requests_pending
                    ON enrollment_requests (student_id, class_id) WHERE status = 'pending';

                    CREATE INDEX IF NOT EXISTS idx_classes_department
                    ON classes (department_id);

                    CREATE INDEX IF NOT EXISTS idx_waitlist_expiry
                    ON waitlist_entries (notification_expires_at);

                    CREATE INDEX IF NOT EXISTS idx_notifications_entry
                    ON waitlist_notifications (waitlist_entry_id);

                    CREATE INDEX IF NOT EXISTS idx_enrollments_class
                    ON enrollments (class_id);

                    CREATE INDEX IF NOT EXISTS idx_audit_class
                    ON enrollment_audit_log (class_id, created_at);
                """)
                self.logger.debug("Database schema initialized successfully")

        except StoreError as e:
            self.logger.error(f"Failed to initialize database schema: {e}")
            raise

    # =========================================================================
    # Row conversion
    # =========================================================================

    @staticmethod
    def _row_to_class(row: sqlite3.Row) -> ClassRecord:
        return ClassRecord(
            class_id=row["class_id"],
            name=row["name"],
            code=row["code"],
            course_code=row["course_code"],
            department_id=row["department_id"],
            capacity=row["capacity"],
            current_enrollment=row["current_enrollment"],
            waitlist_capacity=row["waitlist_capacity"],
            enrollment_type=EnrollmentType(row["enrollment_type"]),
            instructor_id=row["instructor_id"],
            waitlist_count=row["waitlist_count"],
        )

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> WaitlistEntry:
        return WaitlistEntry(
            id=row["id"],
            student_id=row["student_id"],
            class_id=row["class_id"],
            position=row["position"],
            priority=row["priority"],
            added_at=parse_timestamp(row["added_at"]),
            notified_at=parse_timestamp(row["notified_at"]),
            notification_expires_at=parse_timestamp(row["notification_expires_at"]),
            estimated_probability=row["estimated_probability"],
        )

    @staticmethod
    def _row_to_notification(row: sqlite3.Row) -> WaitlistNotification:
        return WaitlistNotification(
            id=row["id"],
            waitlist_entry_id=row["waitlist_entry_id"],
            student_id=row["student_id"],
            class_id=row["class_id"],
            notification_type=NotificationType(row["notification_type"]),
            sent_at=parse_timestamp(row["sent_at"]),
            response_deadline=parse_timestamp(row["response_deadline"]),
            responded=bool(row["responded"]),
            response=WaitlistResponse(row["response"]) if row["response"] else None,
            response_at=parse_timestamp(row["response_at"]),
            class_name=row["class_name"],
            class_code=row["class_code"],
        )

    @staticmethod
    def _row_to_enrollment(row: sqlite3.Row) -> Enrollment:
        return Enrollment(
            id=row["id"],
            student_id=row["student_id"],
            class_id=row["class_id"],
            status=EnrollmentStatus(row["status"]),
            enrolled_at=parse_timestamp(row["enrolled_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            enrolled_by=row["enrolled_by"],
            drop_reason=row["drop_reason"],
        )

    @staticmethod
    def _row_to_request(row: sqlite3.Row) -> EnrollmentRequest:
        return EnrollmentRequest(
            id=row["id"],
            student_id=row["student_id"],
            class_id=row["class_id"],
            status=EnrollmentRequestStatus(row["status"]),
            requested_at=parse_timestamp(row["requested_at"]),
            expires_at=parse_timestamp(row["expires_at"]),
            justification=row["justification"],
            priority=row["priority"],
            reviewed_at=parse_timestamp(row["reviewed_at"]),
            reviewed_by=row["reviewed_by"],
            review_notes=row["review_notes"],
        )

    @staticmethod
    def _row_to_invitation(row: sqlite3.Row) -> ClassInvitation:
        return ClassInvitation(
            id=row["id"],
            class_id=row["class_id"],
            student_id=row["student_id"],
            invited_by=row["invited_by"],
            expires_at=parse_timestamp(row["expires_at"]),
            accepted_at=parse_timestamp(row["accepted_at"]),
            declined_at=parse_timestamp(row["declined_at"]),
        )

    # =========================================================================
    # Classes and instructors
    # =========================================================================

    def upsert_class(self, record: ClassRecord) -> None:
        """
        Insert a class or update its descriptive fields and limits.

        ``current_enrollment`` is only written on insert; afterwards it is
        owned by the enrollment operations.
        """
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO classes
                (class_id, name, code, course_code, department_id, capacity,
                 current_enrollment, waitlist_capacity, enrollment_type, instructor_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (class_id) DO UPDATE SET
                    name = excluded.name,
                    code = excluded.code,
                    course_code = excluded.course_code,
                    department_id = excluded.department_id,
                    capacity = excluded.capacity,
                    waitlist_capacity = excluded.waitlist_capacity,
                    enrollment_type = excluded.enrollment_type,
                    instructor_id = excluded.instructor_id
            """,
                (
                    record.class_id,
                    record.name,
                    record.code,
                    record.course_code,
                    record.department_id,
                    record.capacity,
                    record.current_enrollment,
                    record.waitlist_capacity,
                    record.enrollment_type.value,
                    record.instructor_id,
                ),
            )
        self.logger.debug(f"Class {record.class_id} stored")

    def get_class(self, class_id: str) -> Optional[ClassRecord]:
        with self.get_connection() as conn:
            row = conn.execute(
                f"SELECT {_CLASS_COLUMNS} FROM classes c WHERE c.class_id = ?",
                (class_id,),
            ).fetchone()
        return self._row_to_class(row) if row else None

    def list_classes(self, department_id: Optional[str] = None) -> List[ClassRecord]:
        query = f"SELECT {_CLASS_COLUMNS} FROM classes c"
        params: List[Any] = []
        if department_id:
            query += " WHERE c.department_id = ?"
            params.append(department_id)
        query += " ORDER BY c.class_id"

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_class(row) for row in rows]

    def get_class_capacity(self, class_id: str) -> Optional[ClassCapacity]:
        """Capacity snapshot of a class, or None when the class is unknown."""
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT class_id, capacity, current_enrollment, waitlist_capacity
                FROM classes WHERE class_id = ?
            """,
                (class_id,),
            ).fetchone()
        if row is None:
            return None
        return ClassCapacity(
            class_id=row["class_id"],
            capacity=row["capacity"],
            current_enrollment=row["current_enrollment"],
            waitlist_capacity=row["waitlist_capacity"],
        )

    def list_classes_with_open_seats(self) -> List[str]:
        """Ids of classes that have free seats and a non-empty waitlist."""
        with self.get_connection() as conn:
            rows = conn.execute("""
                SELECT c.class_id FROM classes c
                WHERE c.current_enrollment < c.capacity
                  AND EXISTS (SELECT 1 FROM waitlist_entries w WHERE w.class_id = c.class_id)
                ORDER BY c.class_id
            """).fetchall()
        return [row["class_id"] for row in rows]

    def upsert_instructor(
        self, instructor_id: str, name: str, department_id: Optional[str] = None
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO instructors (instructor_id, name, department_id)
                VALUES (?, ?, ?)
                ON CONFLICT (instructor_id) DO UPDATE SET
                    name = excluded.name,
                    department_id = excluded.department_id
            """,
                (instructor_id, name, department_id),
            )

    # =========================================================================
    # Waitlist entries
    # =========================================================================

    def _fetch_entries(self, conn: sqlite3.Connection, class_id: str) -> List[WaitlistEntry]:
        rows = conn.execute(
            "SELECT * FROM waitlist_entries WHERE class_id = ? ORDER BY position",
            (class_id,),
        ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def _fetch_entry(
        self, conn: sqlite3.Connection, student_id: str, class_id: str
    ) -> Optional[WaitlistEntry]:
        row = conn.execute(
            "SELECT * FROM waitlist_entries WHERE student_id = ? AND class_id = ?",
            (student_id, class_id),
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def _repack(
        self,
        conn: sqlite3.Connection,
        class_id: str,
        ordered: Optional[Sequence[WaitlistEntry]] = None,
    ) -> List[WaitlistEntry]:
        """
        Rewrite positions of a class waitlist to exactly 1..N.

        ``ordered`` gives the target order; by default the current position
        order is kept and only gaps are closed; a gap-free waitlist is left
        as it is. Positions are parked at negative values first so
        UNIQUE(class_id, position) holds after every statement. Cached
        probabilities are refreshed alongside.
        """
        if ordered is None:
            ordered = self._fetch_entries(conn, class_id)
            if is_contiguous([entry.position for entry in ordered]):
                return list(ordered)
            self.logger.debug(f"Closing position gaps in waitlist of {class_id}")

        conn.execute(
            "UPDATE waitlist_entries SET position = -position WHERE class_id = ? AND position > 0",
            (class_id,),
        )
        for index, entry in enumerate(ordered, start=1):
            entry.position = index
            entry.estimated_probability = calculate_enrollment_probability(index)
            conn.execute(
                """
                UPDATE waitlist_entries
                SET position = ?, estimated_probability = ?
                WHERE id = ?
            """,
                (index, entry.estimated_probability, entry.id),
            )
        return list(ordered)

    def _audit(
        self,
        conn: sqlite3.Connection,
        student_id: str,
        class_id: str,
        action: AuditAction,
        performed_by: Optional[str],
        at: datetime,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO enrollment_audit_log
            (student_id, class_id, action, performed_by, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (
                student_id,
                class_id,
                action.value,
                performed_by,
                json.dumps(details, sort_keys=True) if details else None,
                format_timestamp(at),
            ),
        )

    def get_waitlist_entry(self, student_id: str, class_id: str) -> Optional[WaitlistEntry]:
        with self.get_connection() as conn:
            return self._fetch_entry(conn, student_id, class_id)

    def get_waitlist_entry_by_id(self, entry_id: str) -> Optional[WaitlistEntry]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM waitlist_entries WHERE id = ?", (entry_id,)
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def list_waitlist(self, class_id: str) -> List[WaitlistEntry]:
        """All entries of a class waitlist in position order."""
        with self.get_connection() as conn:
            return self._fetch_entries(conn, class_id)

    def list_student_waitlists(self, student_id: str) -> List[WaitlistEntry]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM waitlist_entries WHERE student_id = ? ORDER BY added_at",
                (student_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count_waitlist(self, class_id: str) -> int:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM waitlist_entries WHERE class_id = ?", (class_id,)
            ).fetchone()
        return int(row[0])

    def insert_waitlist_entry(
        self,
        student_id: str,
        class_id: str,
        priority: int,
        added_at: datetime,
        performed_by: Optional[str] = None,
    ) -> WaitlistEntry:
        """
        Add a student to a class waitlist at the position their priority earns.

        Entries at or after the insert position shift back by one, and the
        whole waitlist is re-packed in the same transaction.

        Raises:
            ClassNotFoundError: The class does not exist
            DuplicateEntryError: The student already has an entry for the class
            WaitlistFullError: The waitlist has reached its capacity
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT waitlist_capacity FROM classes WHERE class_id = ?", (class_id,)
            ).fetchone()
            if row is None:
                raise ClassNotFoundError(class_id)

            if self._fetch_entry(conn, student_id, class_id) is not None:
                raise DuplicateEntryError(
                    f"Student {student_id} is already on the waitlist for class {class_id}",
                    field="studentId",
                )

            entries = self._fetch_entries(conn, class_id)
            if len(entries) >= row["waitlist_capacity"]:
                raise WaitlistFullError(
                    f"Waitlist for class {class_id} is full", field="classId"
                )

            position = calculate_insert_position(entries, priority)
            entry = WaitlistEntry(
                id=_new_id(),
                student_id=student_id,
                class_id=class_id,
                position=-(len(entries) + 1),
                priority=priority,
                added_at=added_at,
            )
            conn.execute(
                """
                INSERT INTO waitlist_entries
                (id, student_id, class_id, position, priority, added_at, estimated_probability)
                VALUES (?, ?, ?, ?, ?, ?, 0)
            """,
                (
                    entry.id,
                    student_id,
                    class_id,
                    entry.position,
                    priority,
                    format_timestamp(added_at),
                ),
            )

            ordered = list(entries)
            ordered.insert(position - 1, entry)
            self._repack(conn, class_id, ordered)

            self._audit(
                conn,
                student_id,
                class_id,
                AuditAction.WAITLISTED,
                performed_by,
                added_at,
                {"position": entry.position, "priority": priority},
            )

        self.logger.info(
            f"Student {student_id} waitlisted for class {class_id} at position {entry.position}"
        )
        return entry

    def remove_waitlist_entry(
        self,
        student_id: str,
        class_id: str,
        removed_at: datetime,
        performed_by: Optional[str] = None,
    ) -> WaitlistEntry:
        """
        Withdraw a student from a class waitlist and close the gap.

        Any open offer for the entry is closed with ``decline``.

        Raises:
            NotFoundError: The student is not on the waitlist
        """
        with self.transaction() as conn:
            entry = self._fetch_entry(conn, student_id, class_id)
            if entry is None:
                raise NotFoundError(
                    f"Student {student_id} is not on the waitlist for class {class_id}",
                    field="studentId",
                )
            self._close_open_notifications(
                conn, entry.id, WaitlistResponse.DECLINE, removed_at
            )
            conn.execute("DELETE FROM waitlist_entries WHERE id = ?", (entry.id,))
            self._repack(conn, class_id)
            self._audit(
                conn,
                student_id,
                class_id,
                AuditAction.REMOVED,
                performed_by,
                removed_at,
                {"position": entry.position, "reason": "withdrawn"},
            )

        self.logger.info(f"Student {student_id} removed from waitlist of class {class_id}")
        return entry

    def update_waitlist_priority(
        self,
        student_id: str,
        class_id: str,
        new_priority: int,
        updated_at: datetime,
        performed_by: Optional[str] = None,
    ) -> WaitlistEntry:
        """
        Change an entry's priority and reorder the whole class waitlist.

        Raises:
            NotFoundError: The student is not on the waitlist
        """
        with self.transaction() as conn:
            entry = self._fetch_entry(conn, student_id, class_id)
            if entry is None:
                raise NotFoundError(
                    f"Student {student_id} is not on the waitlist for class {class_id}",
                    field="studentId",
                )
            old_priority = entry.priority
            conn.execute(
                "UPDATE waitlist_entries SET priority = ? WHERE id = ?",
                (new_priority, entry.id),
            )

            entries = self._fetch_entries(conn, class_id)
            entries.sort(key=get_waitlist_sort_key)
            ordered = self._repack(conn, class_id, entries)
            updated = next(item for item in ordered if item.id == entry.id)

            self._audit(
                conn,
                student_id,
                class_id,
                AuditAction.WAITLISTED,
                performed_by,
                updated_at,
                {
                    "old_priority": old_priority,
                    "new_priority": new_priority,
                    "position": updated.position,
                },
            )
        return updated

    def list_unnotified_entries(self, class_id: str, limit: int) -> List[WaitlistEntry]:
        """First ``limit`` entries in position order that have no offer yet."""
        if limit <= 0:
            return []
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM waitlist_entries
                WHERE class_id = ? AND notified_at IS NULL
                ORDER BY position
                LIMIT ?
            """,
                (class_id, limit),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count_open_offers(self, class_id: str, now: datetime) -> int:
        """Entries holding an offer whose response window has not closed."""
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM waitlist_entries
                WHERE class_id = ?
                  AND notified_at IS NOT NULL
                  AND (notification_expires_at IS NULL OR notification_expires_at >= ?)
            """,
                (class_id, format_timestamp(now)),
            ).fetchone()
        return int(row[0])

    def list_expired_offers(self, now: datetime) -> List[WaitlistEntry]:
        """Entries whose offer deadline is strictly before ``now``."""
        with self.get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM waitlist_entries
                WHERE notification_expires_at IS NOT NULL
                  AND notification_expires_at < ?
                ORDER BY class_id, position
            """,
                (format_timestamp(now),),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    # =========================================================================
    # Offers and notifications
    # =========================================================================

    def _insert_notification(
        self,
        conn: sqlite3.Connection,
        entry_id: str,
        student_id: str,
        class_id: str,
        notification_type: NotificationType,
        sent_at: datetime,
        response_deadline: Optional[datetime] = None,
    ) -> str:
        notification_id = _new_id()
        conn.execute(
            """
            INSERT INTO waitlist_notifications
            (id, waitlist_entry_id, student_id, class_id, notification_type,
             sent_at, response_deadline)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (
                notification_id,
                entry_id,
                student_id,
                class_id,
                notification_type.value,
                format_timestamp(sent_at),
                format_timestamp(response_deadline),
            ),
        )
        return notification_id

    def _fetch_notification(
        self, conn: sqlite3.Connection, notification_id: str
    ) -> WaitlistNotification:
        row = conn.execute(
            f"""
            SELECT {_NOTIFICATION_COLUMNS}
            FROM waitlist_notifications n
            LEFT JOIN classes c ON c.class_id = n.class_id
            WHERE n.id = ?
        """,
            (notification_id,),
        ).fetchone()
        return self._row_to_notification(row)

    def _close_open_notifications(
        self,
        conn: sqlite3.Connection,
        entry_id: str,
        response: WaitlistResponse,
        responded_at: datetime,
    ) -> int:
        cursor = conn.execute(
            """
            UPDATE waitlist_notifications
            SET responded = 1, response = ?, response_at = ?
            WHERE waitlist_entry_id = ?
              AND notification_type = ?
              AND responded = 0
        """,
            (
                response.value,
                format_timestamp(responded_at),
                entry_id,
                NotificationType.ENROLLMENT_AVAILABLE.value,
            ),
        )
        return cursor.rowcount

    def record_waitlist_offer(
        self, entry_id: str, sent_at: datetime, response_deadline: datetime
    ) -> WaitlistNotification:
        """
        Mark an entry as offered and create its enrollment-available notification.

        Both writes happen in one transaction, so an entry is never marked
        notified without a matching notification record.

        Raises:
            NotFoundError: The entry no longer exists
            DuplicateEntryError: The entry already holds an offer
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM waitlist_entries WHERE id = ?", (entry_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Waitlist entry {entry_id} not found")
            entry = self._row_to_entry(row)
            if entry.is_notified:
                raise DuplicateEntryError(
                    f"Waitlist entry {entry_id} already holds an offer"
                )

            notification_id = self._insert_notification(
                conn,
                entry.id,
                entry.student_id,
                entry.class_id,
                NotificationType.ENROLLMENT_AVAILABLE,
                sent_at,
                response_deadline,
            )
            conn.execute(
                """
                UPDATE waitlist_entries
                SET notified_at = ?, notification_expires_at = ?
                WHERE id = ?
            """,
                (
                    format_timestamp(sent_at),
                    format_timestamp(response_deadline),
                    entry.id,
                ),
            )
            notification = self._fetch_notification(conn, notification_id)

        self.logger.debug(
            f"Offer recorded for student {entry.student_id} in class {entry.class_id}"
        )
        return notification

    def add_notification(
        self,
        entry: WaitlistEntry,
        notification_type: NotificationType,
        sent_at: datetime,
        response_deadline: Optional[datetime] = None,
    ) -> WaitlistNotification:
        """Record an informational notification such as a reminder."""
        with self.transaction() as conn:
            notification_id = self._insert_notification(
                conn,
                entry.id,
                entry.student_id,
                entry.class_id,
                notification_type,
                sent_at,
                response_deadline,
            )
            return self._fetch_notification(conn, notification_id)

    def get_open_notification(self, entry_id: str) -> Optional[WaitlistNotification]:
        """The unanswered enrollment-available notification of an entry, if any."""
        with self.get_connection() as conn:
            row = conn.execute(
                f"""
                SELECT {_NOTIFICATION_COLUMNS}
                FROM waitlist_notifications n
                LEFT JOIN classes c ON c.class_id = n.class_id
                WHERE n.waitlist_entry_id = ?
                  AND n.notification_type = ?
                  AND n.responded = 0
                ORDER BY n.sent_at DESC
                LIMIT 1
            """,
                (entry_id, NotificationType.ENROLLMENT_AVAILABLE.value),
            ).fetchone()
        return self._row_to_notification(row) if row else None

    def list_notifications(
        self,
        student_id: Optional[str] = None,
        class_id: Optional[str] = None,
        entry_id: Optional[str] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> List[WaitlistNotification]:
        query = f"""
            SELECT {_NOTIFICATION_COLUMNS}
            FROM waitlist_notifications n
            LEFT JOIN classes c ON c.class_id = n.class_id
            WHERE 1 = 1
        """
        params: List[Any] = []
        if student_id:
            query += " AND n.student_id = ?"
            params.append(student_id)
        if class_id:
            query += " AND n.class_id = ?"
            params.append(class_id)
        if entry_id:
            query += " AND n.waitlist_entry_id = ?"
            params.append(entry_id)
        if notification_type:
            query += " AND n.notification_type = ?"
            params.append(notification_type.value)
        query += " ORDER BY n.sent_at"

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def list_offers_needing_reminder(
        self, now: datetime, until: datetime
    ) -> List[WaitlistNotification]:
        """
        Open offers whose deadline falls in ``[now, until]`` and that have not
        had a deadline reminder since they were sent.
        """
        with self.get_connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_NOTIFICATION_COLUMNS}
                FROM waitlist_notifications n
                JOIN waitlist_entries w ON w.id = n.waitlist_entry_id
                LEFT JOIN classes c ON c.class_id = n.class_id
                WHERE n.notification_type = ?
                  AND n.responded = 0
                  AND n.response_deadline >= ?
                  AND n.response_deadline <= ?
                  AND NOT EXISTS (
                      SELECT 1 FROM waitlist_notifications r
                      WHERE r.waitlist_entry_id = n.waitlist_entry_id
                        AND r.notification_type = ?
                        AND r.sent_at >= n.sent_at
                  )
                ORDER BY n.response_deadline
            """,
                (
                    NotificationType.ENROLLMENT_AVAILABLE.value,
                    format_timestamp(now),
                    format_timestamp(until),
                    NotificationType.DEADLINE_REMINDER.value,
                ),
            ).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def accept_waitlist_offer(self, entry_id: str, responded_at: datetime) -> Enrollment:
        """
        Turn an accepted offer into an enrollment.

        In one transaction: the open notification is marked ``accept``, an
        enrolled Enrollment is created, the class enrollment count goes up,
        the entry is deleted and the waitlist re-packed.

        Raises:
            NotFoundError: The entry no longer exists
            AlreadyEnrolledError: The student already holds an active enrollment
            ClassFullError: The class has no free seat left
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM waitlist_entries WHERE id = ?", (entry_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Waitlist entry {entry_id} not found")
            entry = self._row_to_entry(row)

            self._close_open_notifications(
                conn, entry.id, WaitlistResponse.ACCEPT, responded_at
            )
            enrollment = self._insert_enrollment(
                conn,
                entry.student_id,
                entry.class_id,
                WAITLIST_SYSTEM,
                responded_at,
            )
            conn.execute("DELETE FROM waitlist_entries WHERE id = ?", (entry.id,))
            self._repack(conn, entry.class_id)
            self._audit(
                conn,
                entry.student_id,
                entry.class_id,
                AuditAction.ENROLLED,
                WAITLIST_SYSTEM,
                responded_at,
                {"source": "waitlist", "position": entry.position},
            )

        self.logger.info(
            f"Student {entry.student_id} enrolled in class {entry.class_id} from the waitlist"
        )
        return enrollment

    def close_waitlist_offer(
        self,
        entry_id: str,
        response: WaitlistResponse,
        responded_at: datetime,
        expired_before: Optional[datetime] = None,
    ) -> bool:
        """
        Close an offer with ``decline`` or ``no_response`` and drop the entry.

        With ``expired_before`` the entry is only closed if its offer deadline
        is earlier than that instant, which keeps expiry from racing a
        concurrent acceptance.

        Returns:
            bool: False when the entry was already gone or not yet expired
        """
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM waitlist_entries WHERE id = ?", (entry_id,)
            ).fetchone()
            if row is None:
                return False
            entry = self._row_to_entry(row)
            if expired_before is not None and not entry.is_offer_expired(expired_before):
                return False

            self._close_open_notifications(conn, entry.id, response, responded_at)
            conn.execute("DELETE FROM waitlist_entries WHERE id = ?", (entry.id,))
            self._repack(conn, entry.class_id)
            self._audit(
                conn,
                entry.student_id,
                entry.class_id,
                AuditAction.REMOVED,
                WAITLIST_SYSTEM,
                responded_at,
                {"response": response.value, "position": entry.position},
            )

        self.logger.info(
            f"Offer for student {entry.student_id} in class {entry.class_id} closed: {response.value}"
        )
        return True

    # =========================================================================
    # Enrollments
    # =========================================================================

    def _insert_enrollment(
        self,
        conn: sqlite3.Connection,
        student_id: str,
        class_id: str,
        enrolled_by: Optional[str],
        enrolled_at: datetime,
    ) -> Enrollment:
        row = conn.execute(
            "SELECT capacity, current_enrollment FROM classes WHERE class_id = ?",
            (class_id,),
        ).fetchone()
        if row is None:
            raise ClassNotFoundError(class_id)

        existing = conn.execute(
            """
            SELECT id FROM enrollments
            WHERE student_id = ? AND class_id = ? AND status != 'dropped'
        """,
            (student_id, class_id),
        ).fetchone()
        if existing is not None:
            raise AlreadyEnrolledError(
                f"Student {student_id} is already enrolled in class {class_id}",
                field="studentId",
            )

        if row["current_enrollment"] >= row["capacity"]:
            raise ClassFullError(f"Class {class_id} is at capacity", field="classId")

        enrollment = Enrollment(
            id=_new_id(),
            student_id=student_id,
            class_id=class_id,
            status=EnrollmentStatus.ENROLLED,
            enrolled_at=enrolled_at,
            updated_at=enrolled_at,
            enrolled_by=enrolled_by,
        )
        conn.execute(
            """
            INSERT INTO enrollments
            (id, student_id, class_id, status, enrolled_by, enrolled_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (
                enrollment.id,
                student_id,
                class_id,
                enrollment.status.value,
                enrolled_by,
                format_timestamp(enrolled_at),
                format_timestamp(enrolled_at),
            ),
        )
        conn.execute(
            "UPDATE classes SET current_enrollment = current_enrollment + 1 WHERE class_id = ?",
            (class_id,),
        )
        return enrollment

    def create_enrollment(
        self,
        student_id: str,
        class_id: str,
        enrolled_by: Optional[str],
        enrolled_at: datetime,
    ) -> Enrollment:
        """
        Enroll a student directly and take one seat.

        Raises:
            ClassNotFoundError: The class does not exist
            AlreadyEnrolledError: The student already holds an active enrollment
            ClassFullError: The class is at capacity
        """
        with self.transaction() as conn:
            enrollment = self._insert_enrollment(
                conn, student_id, class_id, enrolled_by, enrolled_at
            )
            self._audit(
                conn,
                student_id,
                class_id,
                AuditAction.ENROLLED,
                enrolled_by,
                enrolled_at,
                {"source": "direct"},
            )

        self.logger.info(f"Student {student_id} enrolled in class {class_id}")
        return enrollment

    def drop_enrollment(
        self,
        student_id: str,
        class_id: str,
        dropped_at: datetime,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> Enrollment:
        """
        Mark an active enrollment dropped and free its seat.

        Raises:
            NotFoundError: No active enrollment exists
        """
        with self.transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM enrollments
                WHERE student_id = ? AND class_id = ? AND status != 'dropped'
            """,
                (student_id, class_id),
            ).fetchone()
            if row is None:
                raise NotFoundError(
                    f"No active enrollment for student {student_id} in class {class_id}",
                    field="studentId",
                )
            enrollment = self._row_to_enrollment(row)
            previous_status = enrollment.status

            conn.execute(
                """
                UPDATE enrollments
                SET status = 'dropped', drop_reason = ?, updated_at = ?
                WHERE id = ?
            """,
                (reason, format_timestamp(dropped_at), enrollment.id),
            )
            if previous_status == EnrollmentStatus.ENROLLED:
                conn.execute(
                    """
                    UPDATE classes
                    SET current_enrollment = MAX(0, current_enrollment - 1)
                    WHERE class_id = ?
                """,
                    (class_id,),
                )
            self._audit(
                conn,
                student_id,
                class_id,
                AuditAction.DROPPED,
                performed_by,
                dropped_at,
                {"reason": reason} if reason else None,
            )

        enrollment.status = EnrollmentStatus.DROPPED
        enrollment.drop_reason = reason
        enrollment.updated_at = dropped_at
        self.logger.info(f"Student {student_id} dropped from class {class_id}")
        return enrollment

    def get_active_enrollment(self, student_id: str, class_id: str) -> Optional[Enrollment]:
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM enrollments
                WHERE student_id = ? AND class_id = ? AND status != 'dropped'
            """,
                (student_id, class_id),
            ).fetchone()
        return self._row_to_enrollment(row) if row else None

    def list_enrollments(
        self,
        class_id: Optional[str] = None,
        student_id: Optional[str] = None,
        include_dropped: bool = False,
    ) -> List[Enrollment]:
        query = "SELECT * FROM enrollments WHERE 1 = 1"
        params: List[Any] = []
        if class_id:
            query += " AND class_id = ?"
            params.append(class_id)
        if student_id:
            query += " AND student_id = ?"
            params.append(student_id)
        if not include_dropped:
            query += " AND status != 'dropped'"
        query += " ORDER BY enrolled_at"

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_enrollment(row) for row in rows]

    # =========================================================================
    # Enrollment requests
    # =========================================================================

    def create_enrollment_request(
        self,
        student_id: str,
        class_id: str,
        requested_at: datetime,
        expires_at: datetime,
        justification: Optional[str] = None,
        priority: int = 0,
    ) -> EnrollmentRequest:
        """
        Create a pending approval request.

        Raises:
            DuplicateEntryError: A pending request already exists
        """
        request = EnrollmentRequest(
            id=_new_id(),
            student_id=student_id,
            class_id=class_id,
            status=EnrollmentRequestStatus.PENDING,
            requested_at=requested_at,
            expires_at=expires_at,
            justification=justification,
            priority=priority,
        )
        try:
            with self.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO enrollment_requests
                    (id, student_id, class_id, justification, status, priority,
                     requested_at, expires_at)
                    VALUES (?, ?, ?, ?, 'pending', ?, ?, ?)
                """,
                    (
                        request.id,
                        student_id,
                        class_id,
                        justification,
                        priority,
                        format_timestamp(requested_at),
                        format_timestamp(expires_at),
                    ),
                )
        except StoreError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise DuplicateEntryError(
                    f"Student {student_id} already has a pending request for class {class_id}",
                    field="studentId",
                ) from e
            raise

        self.logger.info(f"Enrollment request {request.id} created for {student_id}")
        return request

    def get_enrollment_request(self, request_id: str) -> Optional[EnrollmentRequest]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM enrollment_requests WHERE id = ?", (request_id,)
            ).fetchone()
        return self._row_to_request(row) if row else None

    def list_enrollment_requests(
        self,
        class_id: Optional[str] = None,
        status: Optional[EnrollmentRequestStatus] = None,
    ) -> List[EnrollmentRequest]:
        query = "SELECT * FROM enrollment_requests WHERE 1 = 1"
        params: List[Any] = []
        if class_id:
            query += " AND class_id = ?"
            params.append(class_id)
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY priority DESC, requested_at"

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_request(row) for row in rows]

    def review_enrollment_request(
        self,
        request_id: str,
        status: EnrollmentRequestStatus,
        reviewed_by: str,
        reviewed_at: datetime,
        review_notes: Optional[str] = None,
    ) -> EnrollmentRequest:
        """
        Move a pending request to its final status.

        Raises:
            NotFoundError: The request is missing or no longer pending
        """
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE enrollment_requests
                SET status = ?, reviewed_by = ?, reviewed_at = ?, review_notes = ?
                WHERE id = ? AND status = 'pending'
            """,
                (
                    status.value,
                    reviewed_by,
                    format_timestamp(reviewed_at),
                    review_notes,
                    request_id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    "Enrollment request not found or already processed",
                    field="requestId",
                )
            row = conn.execute(
                "SELECT * FROM enrollment_requests WHERE id = ?", (request_id,)
            ).fetchone()
            request = self._row_to_request(row)

            action = (
                AuditAction.APPROVED
                if status == EnrollmentRequestStatus.APPROVED
                else AuditAction.DENIED
            )
            self._audit(
                conn,
                request.student_id,
                request.class_id,
                action,
                reviewed_by,
                reviewed_at,
                {"request_id": request_id, "notes": review_notes},
            )
        return request

    def expire_enrollment_requests(self, now: datetime) -> int:
        """Mark pending requests past their expiry as expired."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE enrollment_requests
                SET status = 'expired'
                WHERE status = 'pending' AND expires_at < ?
            """,
                (format_timestamp(now),),
            )
            expired = cursor.rowcount
        if expired:
            self.logger.info(f"Expired {expired} pending enrollment requests")
        return expired

    # =========================================================================
    # Invitations
    # =========================================================================

    def create_invitation(
        self,
        class_id: str,
        student_id: str,
        invited_by: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> ClassInvitation:
        invitation = ClassInvitation(
            id=_new_id(),
            class_id=class_id,
            student_id=student_id,
            invited_by=invited_by,
            expires_at=expires_at,
        )
        with self.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM classes WHERE class_id = ?", (class_id,)
            ).fetchone() is None:
                raise ClassNotFoundError(class_id)
            conn.execute(
                """
                INSERT INTO class_invitations
                (id, class_id, student_id, invited_by, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (
                    invitation.id,
                    class_id,
                    student_id,
                    invited_by,
                    format_timestamp(created_at),
                    format_timestamp(expires_at),
                ),
            )
        return invitation

    def get_invitation(self, invitation_id: str) -> Optional[ClassInvitation]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM class_invitations WHERE id = ?", (invitation_id,)
            ).fetchone()
        return self._row_to_invitation(row) if row else None

    def find_valid_invitation(
        self, student_id: str, class_id: str, now: datetime
    ) -> Optional[ClassInvitation]:
        with self.get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM class_invitations
                WHERE student_id = ? AND class_id = ?
                  AND accepted_at IS NULL AND declined_at IS NULL
                  AND expires_at > ?
                ORDER BY expires_at DESC
                LIMIT 1
            """,
                (student_id, class_id, format_timestamp(now)),
            ).fetchone()
        return self._row_to_invitation(row) if row else None

    def mark_invitation_accepted(self, invitation_id: str, accepted_at: datetime) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE class_invitations SET accepted_at = ?
                WHERE id = ? AND accepted_at IS NULL AND declined_at IS NULL
            """,
                (format_timestamp(accepted_at), invitation_id),
            )
            return cursor.rowcount == 1

    # =========================================================================
    # Audit and statistics
    # =========================================================================

    def list_audit_log(
        self,
        class_id: Optional[str] = None,
        student_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        query = "SELECT * FROM enrollment_audit_log WHERE 1 = 1"
        params: List[Any] = []
        if class_id:
            query += " AND class_id = ?"
            params.append(class_id)
        if student_id:
            query += " AND student_id = ?"
            params.append(student_id)
        query += " ORDER BY audit_id DESC LIMIT ?"
        params.append(limit)

        with self.get_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            {
                "student_id": row["student_id"],
                "class_id": row["class_id"],
                "action": row["action"],
                "performed_by": row["performed_by"],
                "details": json.loads(row["details"]) if row["details"] else {},
                "created_at": parse_timestamp(row["created_at"]),
            }
            for row in rows
        ]

    def get_database_stats(self) -> Dict[str, Any]:
        """Row counts per table plus the database file size."""
        stats: Dict[str, Any] = {}
        with self.get_connection() as conn:
            for table in _TABLES:
                row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                stats[table] = int(row[0])
        stats["db_size_mb"] = (
            self.db_path.stat().st_size / (1024 * 1024) if self.db_path.exists() else 0.0
        )
        return stats

    # =========================================================================
    # Planning frames
    # =========================================================================

    def get_department_sections_frame(self, department_id: str) -> pd.DataFrame:
        """One row per class in the department with enrollment and waitlist totals."""
        with self.get_connection() as conn:
            return pd.read_sql_query(
                """
                SELECT
                    c.class_id,
                    c.name,
                    COALESCE(c.course_code, c.name) AS course_code,
                    c.capacity,
                    c.current_enrollment,
                    c.instructor_id,
                    (SELECT COUNT(*) FROM waitlist_entries w WHERE w.class_id = c.class_id)
                        AS waitlist_count
                FROM classes c
                WHERE c.department_id = ?
                ORDER BY c.class_id
            """,
                conn,
                params=(department_id,),
            )

    def get_instructor_loads_frame(self, department_id: str) -> pd.DataFrame:
        """Instructors of a department with the number of classes they teach."""
        with self.get_connection() as conn:
            return pd.read_sql_query(
                """
                SELECT
                    i.instructor_id,
                    i.name,
                    COUNT(c.class_id) AS class_count
                FROM instructors i
                LEFT JOIN classes c ON c.instructor_id = i.instructor_id
                WHERE i.department_id = ?
                GROUP BY i.instructor_id, i.name
            """,
                conn,
                params=(department_id,),
            )

    def get_enrollment_history_frame(
        self, course_code: str, department_id: str, since: Optional[datetime] = None
    ) -> pd.DataFrame:
        """Enrollment timestamps for every class of a course since ``since``."""
        since = since or utc_now() - timedelta(days=730)
        with self.get_connection() as conn:
            frame = pd.read_sql_query(
                """
                SELECT e.enrolled_at
                FROM enrollments e
                JOIN classes c ON c.class_id = e.class_id
                WHERE COALESCE(c.course_code, c.name) = ?
                  AND c.department_id = ?
                  AND e.enrolled_at >= ?
                ORDER BY e.enrolled_at
            """,
                conn,
                params=(course_code, department_id, format_timestamp(since)),
            )
        frame["enrolled_at"] = pd.to_datetime(frame["enrolled_at"], utc=True)
        return frame
