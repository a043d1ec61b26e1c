"""
Clinic store for clinic_reconcile.

The canonical clinic table and the places enrichment table keyed by clinic
identifier. Matching only reads; the correction applier is the only writer.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import PersistenceError
from ..models import SourceRecord, TargetRecord

logger = logging.getLogger(__name__)

WATERMARK_UPSERT = '''
    INSERT INTO clinic_id_watermark (singleton, max_issued) VALUES (1, ?)
    ON CONFLICT(singleton) DO UPDATE SET max_issued = MAX(max_issued, excluded.max_issued)
'''


def enrichment_payload(source: SourceRecord) -> Dict[str, Any]:
    """
    Build the enrichment row for a source record.

    Args:
        source: Source record from the bulk export

    Returns:
        Dictionary with every field the export carried for the clinic
    """
    payload = {
        "place_id": source.place_id,
        "business_name": source.name,
        "full_address": source.address,
        "street": source.street,
        "city": source.city,
        "postal_code": source.postal_code,
        "state": source.state,
        "country": source.country,
        "website": source.website,
        "phone": source.phone,
        "rating": source.rating,
        "review_count": source.review_count,
    }
    payload.update(source.enrichment)
    return payload


class ClinicStore(ABC):
    """Persistent store contract."""

    @abstractmethod
    def fetch_targets(self) -> List[TargetRecord]:
        """All target records ordered by identifier."""

    @abstractmethod
    def max_target_id(self) -> int:
        """Largest identifier ever issued (0 for an empty store)."""

    @abstractmethod
    def delete_enrichment(self, place_id: Optional[str], target_id: int) -> int:
        """Delete the linkage row(s) for (place id, target id); returns rows removed."""

    @abstractmethod
    def insert_target(self, record: TargetRecord, rating: Optional[float] = None,
                      review_count: Optional[int] = None) -> None:
        """Insert a new target record under its pre-allocated identifier."""

    @abstractmethod
    def insert_enrichment(self, target_id: int, source: SourceRecord) -> None:
        """Insert the enrichment payload of ``source`` under ``target_id``."""

    def mark_issued(self, target_id: int) -> None:
        """Record an identifier as issued without a clinic behind it."""


class SqliteClinicStore(ClinicStore):
    """
    SQLite implementation of the clinic store.

    Opens a connection per operation. Every ``sqlite3.Error`` surfaces as a
    ``PersistenceError`` carrying the operation name and its key fields.
    """

    def __init__(self, db_path: str = "data/clinics.db"):
        """
        Initialize clinic store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        logger.info(f"Initialized SqliteClinicStore at {db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_database(self):
        """Create clinic and enrichment tables."""
        conn = self._connect()
        try:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS clinics (
                    clinic_id INTEGER PRIMARY KEY,
                    clinic_name TEXT NOT NULL,
                    address TEXT,
                    place_id TEXT,
                    rating REAL,
                    review_count INTEGER,
                    latitude REAL,
                    longitude REAL,
                    phone TEXT,
                    website TEXT,
                    last_rating_update DATETIME
                )
            ''')

            # Issued identifiers are never handed out again, even after a delete
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS clinic_id_watermark (
                    singleton INTEGER PRIMARY KEY CHECK (singleton = 1),
                    max_issued INTEGER NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS places_data (
                    places_data_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    clinic_id INTEGER NOT NULL,
                    place_id TEXT,
                    business_name TEXT,
                    full_address TEXT,
                    street TEXT,
                    city TEXT,
                    postal_code TEXT,
                    state TEXT,
                    country TEXT,
                    website TEXT,
                    phone TEXT,
                    payload_json TEXT,
                    last_updated DATETIME DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (clinic_id) REFERENCES clinics(clinic_id)
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS ix_places_data_place_id ON places_data(place_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS ix_places_data_clinic_id ON places_data(clinic_id)')

            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to initialize clinic store: {e}",
                                   operation="init", context={"db_path": self.db_path})
        finally:
            conn.close()

    def fetch_targets(self) -> List[TargetRecord]:
        """
        Fetch all clinics ordered by identifier.

        Returns:
            List of TargetRecord
        """
        conn = self._connect()
        try:
            rows = conn.execute('''
                SELECT clinic_id, clinic_name, address, latitude, longitude,
                       place_id, phone, website
                FROM clinics
                ORDER BY clinic_id
            ''').fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to fetch clinics: {e}", operation="fetch_targets")
        finally:
            conn.close()

        return [
            TargetRecord(
                target_id=row[0],
                name=row[1],
                address=row[2] or "",
                latitude=row[3],
                longitude=row[4],
                place_id=row[5],
                phone=row[6],
                website=row[7]
            )
            for row in rows
        ]

    def get_target(self, target_id: int) -> Optional[TargetRecord]:
        """Fetch a single clinic, or None."""
        for target in self.fetch_targets():
            if target.target_id == target_id:
                return target
        return None

    def max_target_id(self) -> int:
        conn = self._connect()
        try:
            max_row = conn.execute('SELECT MAX(clinic_id) FROM clinics').fetchone()
            watermark = conn.execute('SELECT max_issued FROM clinic_id_watermark').fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read max clinic id: {e}", operation="max_target_id")
        finally:
            conn.close()

        return max(max_row[0] or 0, watermark[0] if watermark else 0)

    def delete_enrichment(self, place_id: Optional[str], target_id: int) -> int:
        """
        Delete the enrichment row linking ``place_id`` to ``target_id``.

        Idempotent: deleting a row that is already gone removes nothing. A
        missing place id matches no row, so rows of the clinic that carry no
        place id are left alone.

        Args:
            place_id: External place identifier from the source record
            target_id: Wrongly assigned clinic identifier

        Returns:
            Number of rows removed
        """
        conn = self._connect()
        try:
            cursor = conn.execute(
                'DELETE FROM places_data WHERE place_id = ? AND clinic_id = ?',
                [place_id, target_id]
            )
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to delete enrichment: {e}", operation="delete_enrichment",
                                   context={"place_id": place_id, "target_id": target_id})
        finally:
            conn.close()

    def insert_target(self, record: TargetRecord, rating: Optional[float] = None,
                      review_count: Optional[int] = None) -> None:
        """
        Insert a clinic under its pre-allocated identifier.

        Args:
            record: Target record to insert
            rating: Places rating carried over from the source
            review_count: Places review count carried over from the source
        """
        conn = self._connect()
        try:
            conn.execute('''
                INSERT INTO clinics (
                    clinic_id, clinic_name, address, place_id, rating, review_count,
                    latitude, longitude, phone, website, last_rating_update
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', [
                record.target_id, record.name, record.address, record.place_id,
                rating, review_count, record.latitude, record.longitude,
                record.phone, record.website, datetime.now().isoformat()
            ])
            conn.execute(WATERMARK_UPSERT, [record.target_id])
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to insert clinic {record.target_id}: {e}",
                                   operation="insert_target",
                                   context={"target_id": record.target_id, "name": record.name})
        finally:
            conn.close()

    def mark_issued(self, target_id: int) -> None:
        """Raise the watermark to ``target_id`` so it is never issued again."""
        conn = self._connect()
        try:
            conn.execute(WATERMARK_UPSERT, [target_id])
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to record issued clinic id {target_id}: {e}",
                                   operation="mark_issued", context={"target_id": target_id})
        finally:
            conn.close()

    def delete_target(self, target_id: int) -> int:
        """
        Logically remove a clinic and its enrichment rows.

        The identifier stays reserved through the watermark.
        """
        conn = self._connect()
        try:
            conn.execute('DELETE FROM places_data WHERE clinic_id = ?', [target_id])
            cursor = conn.execute('DELETE FROM clinics WHERE clinic_id = ?', [target_id])
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to delete clinic {target_id}: {e}",
                                   operation="delete_target", context={"target_id": target_id})
        finally:
            conn.close()

    def insert_enrichment(self, target_id: int, source: SourceRecord) -> None:
        """
        Insert the enrichment payload of a source record under a clinic id.

        Args:
            target_id: Clinic identifier the payload belongs to
            source: Source record carrying the payload
        """
        payload = enrichment_payload(source)
        conn = self._connect()
        try:
            conn.execute('''
                INSERT INTO places_data (
                    clinic_id, place_id, business_name, full_address, street, city,
                    postal_code, state, country, website, phone, payload_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', [
                target_id, source.place_id, source.name, source.address, source.street,
                source.city, source.postal_code, source.state, source.country,
                source.website, source.phone, json.dumps(payload, default=str)
            ])
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to insert enrichment for clinic {target_id}: {e}",
                                   operation="insert_enrichment",
                                   context={"target_id": target_id, "place_id": source.place_id})
        finally:
            conn.close()

    def fetch_enrichment(self, target_id: int) -> List[Dict[str, Any]]:
        """Enrichment rows for a clinic, payload decoded."""
        conn = self._connect()
        try:
            rows = conn.execute('''
                SELECT place_id, business_name, payload_json
                FROM places_data WHERE clinic_id = ?
                ORDER BY places_data_id
            ''', [target_id]).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to fetch enrichment: {e}", operation="fetch_enrichment",
                                   context={"target_id": target_id})
        finally:
            conn.close()

        return [
            {"place_id": row[0], "business_name": row[1], "payload": json.loads(row[2] or "{}")}
            for row in rows
        ]
