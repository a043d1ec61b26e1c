"""
Audit logging for clinic_reconcile.

Records every correction state transition and every reviewer verdict so
that a correction batch can be traced back identifier by identifier.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd

from ..errors import PersistenceError
from ..models import CorrectionAction

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Audit trail for correction runs and human review.

    ``correction_audit`` holds one row per state transition of a
    CorrectionAction; ``review_decisions`` holds reviewer verdicts on
    reported matches.
    """

    def __init__(self, db_path: str = "data/audit.db", export_dir: str = "data/audit_exports"):
        """
        Initialize audit logger.

        Args:
            db_path: Path to the audit SQLite database
            export_dir: Directory for CSV exports
        """
        self.db_path = db_path
        self.export_dir = export_dir

        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info("Initialized AuditLogger")

    def _init_database(self):
        """Initialize audit database with required tables."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        try:
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS correction_audit (
                    audit_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    action_id TEXT NOT NULL,
                    run_id TEXT,
                    state TEXT NOT NULL,
                    old_target_id INTEGER,
                    new_target_id INTEGER,
                    place_id TEXT,
                    source_name TEXT,
                    linkage_rows_removed INTEGER DEFAULT 0,
                    needs_manual_followup INTEGER DEFAULT 0,
                    message TEXT,
                    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            cursor.execute('''
                CREATE INDEX IF NOT EXISTS ix_correction_audit_action
                ON correction_audit(action_id)
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS review_decisions (
                    decision_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_place_id TEXT,
                    source_name TEXT,
                    target_id INTEGER,
                    decision TEXT NOT NULL,
                    reviewer TEXT,
                    comment TEXT,
                    timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to initialize audit database: {e}",
                                   operation="init", context={"db_path": self.db_path})
        finally:
            conn.close()

        logger.info("Initialized audit database")

    def record_transition(self, action: CorrectionAction, run_id: Optional[str] = None,
                          message: str = ""):
        """
        Record the current state of a correction action.

        Args:
            action: Correction action after its state changed
            run_id: Correction run the action belongs to
            message: Free-text detail (error text, binding)
        """
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('''
                INSERT INTO correction_audit
                (action_id, run_id, state, old_target_id, new_target_id, place_id,
                 source_name, linkage_rows_removed, needs_manual_followup, message, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', [
                action.action_id,
                run_id,
                action.state.value,
                action.wrong_target_id,
                action.new_target_id,
                action.source.place_id,
                action.source.name,
                action.linkage_rows_removed,
                int(action.needs_manual_followup),
                message,
                datetime.now().isoformat()
            ])
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to record transition for {action.action_id}: {e}",
                                   operation="record_transition",
                                   context={"action_id": action.action_id,
                                            "state": action.state.value})
        finally:
            conn.close()

        logger.debug(f"Audit {action.action_id}: {action.state.value} {message}".rstrip())

    def record_review_decision(self, source_place_id: Optional[str], source_name: str,
                               target_id: Optional[int], decision: str,
                               reviewer: str = "anonymous", comment: str = ""):
        """
        Record a reviewer verdict on a reported match.

        Args:
            source_place_id: Place id of the source record
            source_name: Source clinic name
            target_id: Target the source was matched to
            decision: Verdict (CORRECT/WRONG/PROBABLY_CORRECT)
            reviewer: Reviewer name
            comment: Optional comment
        """
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute('''
                INSERT INTO review_decisions
                (source_place_id, source_name, target_id, decision, reviewer, comment, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            ''', [source_place_id, source_name, target_id, decision, reviewer, comment,
                  datetime.now().isoformat()])
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to record review decision: {e}",
                                   operation="record_review_decision",
                                   context={"source_place_id": source_place_id,
                                            "target_id": target_id})
        finally:
            conn.close()

        logger.info(f"Recorded review decision for '{source_name}' -> {target_id}: {decision}")

    def get_correction_history(self, action_id: Optional[str] = None,
                               run_id: Optional[str] = None) -> pd.DataFrame:
        """
        Get correction transitions.

        Args:
            action_id: Restrict to one action
            run_id: Restrict to one correction run

        Returns:
            DataFrame of transitions in recording order
        """
        conn = sqlite3.connect(self.db_path)

        query = "SELECT * FROM correction_audit WHERE 1=1"
        params = []

        if action_id:
            query += " AND action_id = ?"
            params.append(action_id)

        if run_id:
            query += " AND run_id = ?"
            params.append(run_id)

        query += " ORDER BY audit_id"

        try:
            return pd.read_sql_query(query, conn, params=params)
        finally:
            conn.close()

    def get_manual_followups(self) -> pd.DataFrame:
        """
        Actions whose latest transition left them needing a manual re-run.

        Returns:
            DataFrame with one row per action
        """
        conn = sqlite3.connect(self.db_path)

        query = '''
            SELECT a.*
            FROM correction_audit a
            JOIN (
                SELECT action_id, MAX(audit_id) AS last_id
                FROM correction_audit
                GROUP BY action_id
            ) latest ON a.audit_id = latest.last_id
            WHERE a.needs_manual_followup = 1 OR a.state = 'failed'
            ORDER BY a.audit_id
        '''

        try:
            return pd.read_sql_query(query, conn)
        finally:
            conn.close()

    def get_review_decisions(self, start_date: Optional[datetime] = None,
                             end_date: Optional[datetime] = None) -> pd.DataFrame:
        """
        Get review decisions within date range.

        Args:
            start_date: Start date filter
            end_date: End date filter

        Returns:
            DataFrame with review decisions
        """
        conn = sqlite3.connect(self.db_path)

        query = "SELECT * FROM review_decisions WHERE 1=1"
        params = []

        if start_date:
            query += " AND timestamp >= ?"
            params.append(start_date.isoformat())

        if end_date:
            query += " AND timestamp <= ?"
            params.append(end_date.isoformat())

        query += " ORDER BY timestamp DESC"

        try:
            return pd.read_sql_query(query, conn, params=params)
        finally:
            conn.close()

    def calculate_correction_metrics(self, days: int = 30) -> Dict[str, Any]:
        """
        Calculate correction outcome metrics.

        Args:
            days: Number of days to analyze

        Returns:
            Dictionary with final-state counts and review verdict distribution
        """
        conn = sqlite3.connect(self.db_path)

        recent_date = (datetime.now() - timedelta(days=days)).isoformat()

        try:
            final_states = pd.read_sql_query('''
                SELECT a.state, COUNT(*) AS count
                FROM correction_audit a
                JOIN (
                    SELECT action_id, MAX(audit_id) AS last_id
                    FROM correction_audit
                    WHERE timestamp >= ?
                    GROUP BY action_id
                ) latest ON a.audit_id = latest.last_id
                GROUP BY a.state
            ''', conn, params=[recent_date])

            verdicts = pd.read_sql_query('''
                SELECT decision, COUNT(*) AS count
                FROM review_decisions
                WHERE timestamp >= ?
                GROUP BY decision
            ''', conn, params=[recent_date])
        finally:
            conn.close()

        state_counts = final_states.set_index('state')['count'].to_dict() if not final_states.empty else {}
        total_actions = int(sum(state_counts.values()))
        completed = int(state_counts.get('complete', 0))

        return {
            "period_days": days,
            "total_actions": total_actions,
            "completed": completed,
            "created_only": int(state_counts.get('created', 0)),
            "failed": int(state_counts.get('failed', 0)),
            "completion_rate": completed / total_actions if total_actions > 0 else 0,
            "state_distribution": {k: int(v) for k, v in state_counts.items()},
            "review_distribution": (
                {k: int(v) for k, v in verdicts.set_index('decision')['count'].items()}
                if not verdicts.empty else {}
            )
        }

    def export_audit_data(self, output_path: Optional[str] = None) -> str:
        """
        Export the correction audit trail to CSV.

        Args:
            output_path: Output file path (optional)

        Returns:
            Path to exported file
        """
        if output_path is None:
            Path(self.export_dir).mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            output_path = f"{self.export_dir}/correction_audit_{timestamp}.csv"

        history_df = self.get_correction_history()
        history_df.to_csv(output_path, index=False)

        logger.info(f"Exported correction audit to {output_path}")
        return output_path
