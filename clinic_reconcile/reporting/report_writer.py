"""
Reconciliation report writer for clinic_reconcile.

Every matching run produces a new timestamped JSON review file and a row set
in a versioned SQLite record store, so runs are never overwritten and the
correction step can read decisions back in a typed way.
"""

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from ..errors import PersistenceError, ReportIntegrityError
from ..models import MatchDecision
from .serialization import SCHEMA_VERSION, report_to_dict, source_to_dict

logger = logging.getLogger(__name__)

REPORT_PREFIX = "matching-report"


@dataclass
class ReportArtifact:
    """Where a run's report ended up."""
    run_id: str
    path: Path
    report: Dict[str, Any]


class ReconciliationRecordStore:
    """
    Structured history of matching runs.

    Tables: ``schema_info`` (single row, schema version),
    ``reconciliation_runs``, ``match_decisions`` (one row per source) and
    ``match_candidates`` (best and alternates, ranked).
    """

    def __init__(self, db_path: str = "data/reconciliation.db"):
        self.db_path = db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

        logger.info(f"Initialized ReconciliationRecordStore at {db_path}")

    def _init_database(self):
        """Create tables and check the schema version."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        try:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS schema_info (
                    singleton INTEGER PRIMARY KEY CHECK (singleton = 1),
                    schema_version INTEGER NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS reconciliation_runs (
                    run_id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    report_path TEXT,
                    total_unmatched INTEGER,
                    duplicates_found INTEGER,
                    new_clinics INTEGER,
                    schema_version INTEGER NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS match_decisions (
                    run_id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    source_name TEXT NOT NULL,
                    source_place_id TEXT,
                    outcome TEXT NOT NULL,
                    best_target_id INTEGER,
                    best_confidence INTEGER,
                    source_city TEXT,
                    source_state TEXT,
                    source_json TEXT NOT NULL,
                    PRIMARY KEY (run_id, seq),
                    FOREIGN KEY (run_id) REFERENCES reconciliation_runs(run_id)
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS match_candidates (
                    run_id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    rank INTEGER NOT NULL,
                    target_id INTEGER NOT NULL,
                    target_name TEXT,
                    confidence INTEGER NOT NULL,
                    name_score INTEGER NOT NULL,
                    distance_km REAL,
                    reasons_json TEXT NOT NULL,
                    PRIMARY KEY (run_id, seq, rank)
                )
            ''')

            row = cursor.execute('SELECT schema_version FROM schema_info').fetchone()
            if row is None:
                cursor.execute('INSERT INTO schema_info (singleton, schema_version) VALUES (1, ?)',
                               [SCHEMA_VERSION])
            elif row[0] != SCHEMA_VERSION:
                raise PersistenceError(
                    f"Record store schema version {row[0]} does not match {SCHEMA_VERSION}",
                    operation="init", context={"db_path": self.db_path}
                )

            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to initialize record store: {e}",
                                   operation="init", context={"db_path": self.db_path})
        finally:
            conn.close()

    def schema_version(self) -> int:
        conn = sqlite3.connect(self.db_path)
        try:
            return conn.execute('SELECT schema_version FROM schema_info').fetchone()[0]
        finally:
            conn.close()

    def record_run(self, run_id: str, timestamp: str, report_path: str,
                   total_unmatched: int, decisions: Sequence[MatchDecision]):
        """
        Persist one run and its decisions in a single transaction.

        Args:
            run_id: Run identifier
            timestamp: ISO-8601 run timestamp
            report_path: Path of the JSON review file
            total_unmatched: Source rows scanned
            decisions: Classification decisions, in source order
        """
        matched = sum(1 for d in decisions if d.is_match)

        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('''
                INSERT INTO reconciliation_runs
                (run_id, timestamp, report_path, total_unmatched, duplicates_found,
                 new_clinics, schema_version)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            ''', [run_id, timestamp, report_path, total_unmatched, matched,
                  len(decisions) - matched, SCHEMA_VERSION])

            for seq, decision in enumerate(decisions):
                best = decision.best
                conn.execute('''
                    INSERT INTO match_decisions
                    (run_id, seq, source_name, source_place_id, outcome, best_target_id,
                     best_confidence, source_city, source_state, source_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''', [
                    run_id, seq, decision.source.name, decision.source.place_id,
                    decision.outcome.value,
                    best.target.target_id if best else None,
                    best.confidence if best else None,
                    decision.source_city, decision.source_state,
                    json.dumps(source_to_dict(decision.source))
                ])

                ranked = ([best] if best else []) + list(decision.alternates)
                for rank, candidate in enumerate(ranked):
                    conn.execute('''
                        INSERT INTO match_candidates
                        (run_id, seq, rank, target_id, target_name, confidence,
                         name_score, distance_km, reasons_json)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ''', [
                        run_id, seq, rank, candidate.target.target_id, candidate.target.name,
                        candidate.confidence, candidate.name_score, candidate.distance_km,
                        json.dumps(candidate.reasons)
                    ])

            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to record run {run_id}: {e}",
                                   operation="record_run", context={"run_id": run_id})
        finally:
            conn.close()

        logger.info(f"Recorded run {run_id}: {len(decisions)} decisions")

    def list_runs(self) -> pd.DataFrame:
        """All recorded runs, newest first."""
        conn = sqlite3.connect(self.db_path)
        try:
            return pd.read_sql_query(
                'SELECT * FROM reconciliation_runs ORDER BY timestamp DESC', conn
            )
        finally:
            conn.close()

    def get_run_decisions(self, run_id: str) -> pd.DataFrame:
        """Decisions of one run joined with their best candidate."""
        conn = sqlite3.connect(self.db_path)

        query = '''
            SELECT d.seq, d.source_name, d.source_place_id, d.outcome,
                   d.best_target_id, d.best_confidence, c.name_score, c.distance_km,
                   c.reasons_json
            FROM match_decisions d
            LEFT JOIN match_candidates c
                ON c.run_id = d.run_id AND c.seq = d.seq AND c.rank = 0
            WHERE d.run_id = ?
            ORDER BY d.seq
        '''

        try:
            return pd.read_sql_query(query, conn, params=[run_id])
        finally:
            conn.close()

    def get_run_candidates(self, run_id: str) -> pd.DataFrame:
        """All ranked candidates of one run."""
        conn = sqlite3.connect(self.db_path)
        try:
            return pd.read_sql_query(
                'SELECT * FROM match_candidates WHERE run_id = ? ORDER BY seq, rank',
                conn, params=[run_id]
            )
        finally:
            conn.close()


class ReconciliationReportWriter:
    """
    Writes the review artifacts of a matching run.

    The JSON file is created exclusively under a timestamped name; an
    existing file is never replaced.
    """

    def __init__(self, output_dir: str = "reports",
                 record_store: Optional[ReconciliationRecordStore] = None):
        """
        Initialize report writer.

        Args:
            output_dir: Directory for JSON review files
            record_store: Structured run history (optional)
        """
        self.output_dir = Path(output_dir)
        self.record_store = record_store

        logger.info("Initialized ReconciliationReportWriter")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ReconciliationReportWriter":
        reporting = config.get("reporting", {})
        store_path = reporting.get("record_store_path")
        return cls(
            output_dir=reporting.get("output_dir", "reports"),
            record_store=ReconciliationRecordStore(store_path) if store_path else None
        )

    def _check_integrity(self, total_rows: int, decisions: Sequence[MatchDecision]):
        if total_rows <= 0:
            raise ReportIntegrityError("No source rows were loaded; refusing to write an empty report")

        for decision in decisions:
            if decision.is_match and decision.best is None:
                raise ReportIntegrityError(
                    f"Matched decision for '{decision.source.name}' has no best candidate"
                )

    def _write_file(self, report: Dict[str, Any], now: datetime, run_id: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)

        try:
            content = json.dumps(report, indent=2, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ReportIntegrityError(f"Report for run {run_id} is not serializable: {e}")

        stamp = now.strftime("%Y%m%dT%H%M%S%fZ")
        path = self.output_dir / f"{REPORT_PREFIX}-{stamp}-{run_id[:8]}.json"
        with open(path, 'x', encoding='utf-8') as f:
            f.write(content)
        return path

    def write(self, decisions: List[MatchDecision], total_rows: int,
              total_unmatched: int) -> ReportArtifact:
        """
        Write the report for one matching run.

        Args:
            decisions: Classification decisions, in source order
            total_rows: Source rows loaded from the bulk file
            total_unmatched: Source rows scanned (not already linked)

        Returns:
            ReportArtifact with the run id, file path and report body

        Raises:
            ReportIntegrityError: If the run cannot produce a valid report
        """
        self._check_integrity(total_rows, decisions)

        now = datetime.now(timezone.utc)
        run_id = uuid.uuid4().hex
        timestamp = now.isoformat()

        report = report_to_dict(run_id, timestamp, total_unmatched, decisions)
        path = self._write_file(report, now, run_id)
        logger.info(f"Report saved to: {path}")

        if self.record_store is not None:
            self.record_store.record_run(run_id, timestamp, str(path), total_unmatched, decisions)

        return ReportArtifact(run_id=run_id, path=path, report=report)


def load_report(path: str) -> Dict[str, Any]:
    """
    Read a review report back.

    Args:
        path: Path to a JSON report

    Returns:
        Report dictionary

    Raises:
        ReportIntegrityError: If the file is not a readable report
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            report = json.load(f)
    except (OSError, ValueError) as e:
        raise ReportIntegrityError(f"Cannot read report {path}: {e}")

    if not isinstance(report, dict):
        raise ReportIntegrityError(f"Report {path} is not a JSON object")

    missing = [key for key in ("summary", "matches", "noMatches") if key not in report]
    if missing:
        raise ReportIntegrityError(f"Report {path} is missing {missing}")

    version = report.get("schemaVersion", SCHEMA_VERSION)
    if version != SCHEMA_VERSION:
        raise ReportIntegrityError(f"Report {path} has schema version {version}, "
                                   f"expected {SCHEMA_VERSION}")

    return report
