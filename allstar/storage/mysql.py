"""
MySQL storage for listings, grades, runs, events and buyer feedback.
"""
import json
import logging
import uuid
from contextlib import contextmanager, suppress
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional

import mysql.connector
from mysql.connector import Error

from ..config import MySQLConfig, get_config
from ..errors import StorageError
from ..models.grading import Feedback, GradeRow, GradingCriteria, Verdict
from ..models.listing import Listing, ScrapedListing, StoredListing
from ..models.run import Event, RunStatus


logger = logging.getLogger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS listings (
        id CHAR(36) PRIMARY KEY,
        url VARCHAR(768) NOT NULL,
        source VARCHAR(32) NOT NULL,
        external_id VARCHAR(128),
        title TEXT NOT NULL,
        price_cents INT,
        price_text VARCHAR(64),
        location VARCHAR(255),
        seller_name VARCHAR(255),
        image_urls JSON,
        `condition` VARCHAR(128),
        listing_date VARCHAR(64),
        description TEXT,
        raw_data JSON,
        scraped_at DATETIME NOT NULL,
        UNIQUE KEY unique_listing_url (url),
        KEY idx_listing_identity (source, external_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grading_criteria (
        version VARCHAR(64) PRIMARY KEY,
        criteria_prompt TEXT NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grades (
        id CHAR(36) PRIMARY KEY,
        listing_id CHAR(36) NOT NULL,
        prompt_version VARCHAR(64) NOT NULL,
        score DOUBLE NOT NULL,
        grade_letter VARCHAR(8) NOT NULL,
        rationale TEXT,
        flags JSON,
        model_used VARCHAR(128),
        graded_at DATETIME NOT NULL,
        UNIQUE KEY unique_listing_version (listing_id, prompt_version),
        FOREIGN KEY (listing_id) REFERENCES listings(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS buyer_feedback (
        id CHAR(36) PRIMARY KEY,
        grade_id CHAR(36) NOT NULL,
        verdict VARCHAR(16) NOT NULL,
        adjusted_score DOUBLE,
        notes TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        KEY idx_feedback_verdict (verdict, created_at),
        FOREIGN KEY (grade_id) REFERENCES grades(id) ON DELETE CASCADE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agent_runs (
        id CHAR(36) PRIMARY KEY,
        status VARCHAR(16) NOT NULL,
        prompt_version VARCHAR(64) NOT NULL,
        started_at DATETIME NOT NULL,
        finished_at DATETIME,
        listings_scraped INT NOT NULL DEFAULT 0,
        listings_graded INT NOT NULL DEFAULT 0,
        listings_failed INT NOT NULL DEFAULT 0,
        average_score DOUBLE,
        error_message TEXT,
        triggered_by VARCHAR(255)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agent_events (
        id BIGINT AUTO_INCREMENT PRIMARY KEY,
        run_id CHAR(36) NOT NULL,
        event_type VARCHAR(32) NOT NULL,
        listing_id CHAR(36),
        payload JSON,
        created_at DATETIME(6) NOT NULL,
        KEY idx_events_run (run_id, created_at)
    )
    """,
]

RUN_COLUMNS = {
    "status",
    "finished_at",
    "listings_scraped",
    "listings_graded",
    "listings_failed",
    "average_score",
    "error_message",
}

LISTING_COLUMNS = (
    "id, title, price_text, price_cents, url, image_urls, source, external_id, "
    "`condition`, listing_date, location, seller_name, description"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _load_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_listing(row: dict[str, Any]) -> Listing:
    images = _load_json(row.get("image_urls")) or []
    return Listing(
        id=row["id"],
        title=row["title"],
        price=row.get("price_text"),
        price_cents=row.get("price_cents"),
        link=row.get("url"),
        image=images[0] if images else None,
        source=row["source"],
        external_id=row.get("external_id"),
        condition=row.get("condition"),
        listing_date=row.get("listing_date"),
        location=row.get("location"),
        seller_name=row.get("seller_name"),
        description=row.get("description"),
    )


class MySQLStorage:
    """
    Storage backed by MySQL. Every call opens its own connection, so one
    instance can be shared by the grading worker threads.
    """

    def __init__(self, config: Optional[MySQLConfig] = None):
        self.config = config or get_config().mysql

    @contextmanager
    def _cursor(self, dictionary: bool = False) -> Iterator[Any]:
        """Yield a cursor inside a transaction; commit on success, wrap driver errors."""
        try:
            conn = mysql.connector.connect(**self.config.connection_kwargs())
        except Error as e:
            raise StorageError(f"Could not connect to MySQL: {e}") from e
        try:
            cursor = conn.cursor(dictionary=dictionary)
            yield cursor
            conn.commit()
        except Error as e:
            # A dropped connection cannot roll back either
            with suppress(Error):
                conn.rollback()
            raise StorageError(str(e)) from e
        finally:
            with suppress(Error):
                conn.close()

    def init_schema(self) -> None:
        """Create all tables if they don't exist."""
        with self._cursor() as cursor:
            for statement in SCHEMA:
                cursor.execute(statement)
        logger.info(f"Schema ready in database {self.config.database}")

    # ==================== CRITERIA ====================

    def get_active_criteria(self) -> GradingCriteria:
        with self._cursor(dictionary=True) as cursor:
            cursor.execute(
                "SELECT version, criteria_prompt FROM grading_criteria "
                "WHERE is_active = TRUE ORDER BY created_at DESC LIMIT 1"
            )
            row = cursor.fetchone()
        if not row:
            raise StorageError("No active grading criteria")
        return GradingCriteria(version=row["version"], criteria_prompt=row["criteria_prompt"])

    # ==================== LISTINGS ====================

    def find_existing_identities(
        self, identities: list[tuple[str, str]]
    ) -> set[tuple[str, str]]:
        """Which of the given (source, external_id) pairs are already stored."""
        external_ids = sorted({external_id for _, external_id in identities})
        if not external_ids:
            return set()

        placeholders = ", ".join(["%s"] * len(external_ids))
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT source, external_id FROM listings WHERE external_id IN ({placeholders})",
                external_ids,
            )
            rows = cursor.fetchall()
        return {(source, external_id) for source, external_id in rows}

    def upsert_listings(self, items: list[ScrapedListing]) -> list[StoredListing]:
        """
        Insert or refresh listings keyed on url.

        Listings without a link are skipped.

        Returns:
            Ids assigned to the stored rows
        """
        rows = [item for item in items if item.link]
        if not rows:
            return []

        now = _utcnow()
        params = [
            (
                str(uuid.uuid4()),
                item.link,
                item.source.value,
                item.external_id or None,
                item.title,
                item.price_cents,
                item.price,
                item.location,
                item.seller_name,
                json.dumps([item.image]) if item.image else None,
                item.condition,
                item.listing_date,
                item.description,
                json.dumps(item.raw_data, default=str) if item.raw_data else None,
                now,
            )
            for item in rows
        ]

        urls = list(dict.fromkeys(item.link for item in rows))
        placeholders = ", ".join(["%s"] * len(urls))
        with self._cursor() as cursor:
            cursor.executemany(
                """
                INSERT INTO listings (
                    id, url, source, external_id, title, price_cents, price_text,
                    location, seller_name, image_urls, `condition`, listing_date,
                    description, raw_data, scraped_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON DUPLICATE KEY UPDATE
                    source = VALUES(source),
                    external_id = VALUES(external_id),
                    title = VALUES(title),
                    price_cents = VALUES(price_cents),
                    price_text = VALUES(price_text),
                    location = VALUES(location),
                    seller_name = VALUES(seller_name),
                    image_urls = VALUES(image_urls),
                    `condition` = VALUES(`condition`),
                    listing_date = VALUES(listing_date),
                    description = VALUES(description),
                    raw_data = VALUES(raw_data),
                    scraped_at = VALUES(scraped_at)
                """,
                params,
            )
            cursor.execute(f"SELECT id, url FROM listings WHERE url IN ({placeholders})", urls)
            stored = cursor.fetchall()

        return [StoredListing(id=row_id, url=url) for row_id, url in stored]

    def select_ungraded(self, prompt_version: str) -> list[Listing]:
        """Listings with no grade for this prompt version."""
        columns = ", ".join(f"l.{c.strip()}" for c in LISTING_COLUMNS.split(","))
        with self._cursor(dictionary=True) as cursor:
            cursor.execute(
                f"""
                SELECT {columns}
                FROM listings l
                LEFT JOIN grades g
                    ON g.listing_id = l.id AND g.prompt_version = %s
                WHERE g.id IS NULL
                ORDER BY l.scraped_at DESC
                """,
                (prompt_version,),
            )
            rows = cursor.fetchall()
        return [_row_to_listing(row) for row in rows]

    # ==================== GRADES ====================

    def insert_grade(self, row: GradeRow) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO grades (
                    id, listing_id, prompt_version, score, grade_letter,
                    rationale, flags, model_used, graded_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    str(uuid.uuid4()),
                    row.listing_id,
                    row.prompt_version,
                    row.score,
                    row.grade,
                    row.rationale,
                    json.dumps(row.flags),
                    row.model,
                    _utcnow(),
                ),
            )

    # ==================== RUNS & EVENTS ====================

    def create_run(self, prompt_version: str, triggered_by: Optional[str] = None) -> str:
        run_id = str(uuid.uuid4())
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO agent_runs (id, status, prompt_version, started_at, triggered_by)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (run_id, RunStatus.RUNNING.value, prompt_version, _utcnow(), triggered_by or None),
            )
        return run_id

    def update_run(self, run_id: str, fields: dict) -> None:
        unknown = set(fields) - RUN_COLUMNS
        if unknown:
            raise StorageError(f"Unknown run fields: {', '.join(sorted(unknown))}")
        if not fields:
            return

        assignments = ", ".join(f"{column} = %s" for column in fields)
        params = [_db_value(value) for value in fields.values()]
        params.append(run_id)
        with self._cursor() as cursor:
            cursor.execute(f"UPDATE agent_runs SET {assignments} WHERE id = %s", params)

    def append_event(self, event: Event) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO agent_events (run_id, event_type, listing_id, payload, created_at)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    event.run_id,
                    event.event_type.value,
                    event.listing_id,
                    json.dumps(event.payload, default=str),
                    _db_value(event.created_at),
                ),
            )

    # ==================== FEEDBACK & STATS ====================

    def load_feedback(self, verdict: Verdict, limit: int) -> list[Feedback]:
        """Most recent feedback with the given verdict."""
        with self._cursor(dictionary=True) as cursor:
            cursor.execute(
                """
                SELECT l.title AS listing_title, g.score, g.grade_letter,
                       f.adjusted_score, f.notes
                FROM buyer_feedback f
                JOIN grades g ON g.id = f.grade_id
                JOIN listings l ON l.id = g.listing_id
                WHERE f.verdict = %s
                ORDER BY f.created_at DESC
                LIMIT %s
                """,
                (verdict.value, limit),
            )
            rows = cursor.fetchall()

        return [
            Feedback(
                listing_title=row["listing_title"],
                score=row["score"],
                grade=row["grade_letter"],
                adjusted_score=row.get("adjusted_score"),
                notes=row.get("notes"),
            )
            for row in rows
        ]

    def get_listing_stats(self, prompt_version: str) -> dict[str, int]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM listings) AS total,
                    (SELECT COUNT(*) FROM grades WHERE prompt_version = %s) AS graded
                """,
                (prompt_version,),
            )
            total, graded = cursor.fetchone()
        return {"total": total, "graded": graded, "ungraded": total - graded}
