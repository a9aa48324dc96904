"""
Database models and schema for the proposal generation pipeline.

This module defines the SQLite structure for voice profiles, per-period
spending, edit records and explicitly saved proposal history.
"""

import sqlite3
import json
from datetime import datetime
from typing import Dict, List, Optional, Any
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

class DatabaseManager:
    """Manages SQLite persistence for the pipeline."""

    def __init__(self, db_path: str = "data/proposal_forge.db"):
        """Open (and create if needed) the pipeline database at db_path."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    def get_connection(self) -> sqlite3.Connection:
        """Connection whose rows index by column name."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_database(self) -> None:
        """Create the profile, ledger, edit and proposal tables."""
        with self.get_connection() as conn:
            # One row per user, profile body stored as JSON
            conn.execute("""
                CREATE TABLE IF NOT EXISTS voice_profiles (
                    user_id TEXT PRIMARY KEY,
                    profile TEXT NOT NULL,
                    maturity TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Committed spend per budget period
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cost_ledger (
                    period_key TEXT PRIMARY KEY,
                    committed_spend REAL NOT NULL DEFAULT 0,
                    ceiling REAL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Append-only edit records feeding voice learning
            conn.execute("""
                CREATE TABLE IF NOT EXISTS edit_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    record_id TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    proposal_id TEXT NOT NULL,
                    classification TEXT NOT NULL,
                    record TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Proposal history, only written when the user saves it
            conn.execute("""
                CREATE TABLE IF NOT EXISTS proposals (
                    proposal_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    session_id TEXT,
                    template_id TEXT,
                    job_type TEXT,
                    generated_text TEXT,
                    final_text TEXT,
                    aggregate_score REAL,
                    category TEXT,
                    analysis TEXT,
                    created_at TIMESTAMP,
                    saved_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_edit_records_user ON edit_records(user_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_proposals_user ON proposals(user_id)")

            conn.commit()
            logger.info("Database initialized successfully")

    # Voice profile operations
    def load_voice_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Load a stored voice profile as a plain dict."""
        with self.get_connection() as conn:
            cursor = conn.execute("SELECT profile FROM voice_profiles WHERE user_id = ?", (user_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['profile'])
            return None

    def save_voice_profile(self, profile_data: Dict[str, Any]) -> None:
        """Insert or replace a voice profile."""
        with self.get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO voice_profiles (user_id, profile, maturity, version, updated_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                profile_data['user_id'],
                json.dumps(profile_data),
                profile_data.get('maturity', 'cold'),
                profile_data.get('version', 0),
                datetime.now().isoformat()
            ))

    # Cost ledger operations
    def load_ledger(self, period_key: str) -> Optional[Dict[str, Any]]:
        """Load committed spend and ceiling override for a period."""
        with self.get_connection() as conn:
            cursor = conn.execute("SELECT * FROM cost_ledger WHERE period_key = ?", (period_key,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def save_ledger(self, period_key: str, committed_spend: float, ceiling: Optional[float] = None) -> None:
        """Persist committed spend for a period."""
        with self.get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO cost_ledger (period_key, committed_spend, ceiling, updated_at)
                VALUES (?, ?, ?, ?)
            """, (period_key, committed_spend, ceiling, datetime.now().isoformat()))

    # Edit record operations
    def append_edit_record(self, user_id: str, record_data: Dict[str, Any]) -> int:
        """Append an edit record. Records are never updated."""
        with self.get_connection() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO edit_records (record_id, user_id, proposal_id, classification, record, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                record_data['record_id'],
                user_id,
                record_data['proposal_id'],
                record_data['classification'],
                json.dumps(record_data),
                record_data.get('created_at', datetime.now().isoformat())
            ))
            return cursor.lastrowid

    def load_edit_records(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Load the most recent edit records for a user, newest first."""
        with self.get_connection() as conn:
            cursor = conn.execute("""
                SELECT record FROM edit_records
                WHERE user_id = ?
                ORDER BY id DESC
                LIMIT ?
            """, (user_id, limit))
            return [json.loads(row['record']) for row in cursor.fetchall()]

    # Proposal history operations
    def save_proposal(self, proposal_data: Dict[str, Any]) -> None:
        """Save a proposal to history."""
        with self.get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO proposals
                (proposal_id, user_id, session_id, template_id, job_type, generated_text,
                 final_text, aggregate_score, category, analysis, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                proposal_data['proposal_id'],
                proposal_data['user_id'],
                proposal_data.get('session_id'),
                proposal_data.get('template_id'),
                proposal_data.get('job_type'),
                proposal_data.get('generated_text'),
                proposal_data.get('final_text'),
                proposal_data.get('aggregate_score'),
                proposal_data.get('category'),
                json.dumps(proposal_data.get('analysis', {})),
                proposal_data.get('created_at')
            ))

    def get_proposals(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Get saved proposals for a user."""
        with self.get_connection() as conn:
            cursor = conn.execute("""
                SELECT * FROM proposals
                WHERE user_id = ?
                ORDER BY saved_at DESC
                LIMIT ?
            """, (user_id, limit))
            proposals = []
            for row in cursor.fetchall():
                proposal = dict(row)
                proposal['analysis'] = json.loads(proposal['analysis']) if proposal['analysis'] else {}
                proposals.append(proposal)
            return proposals

    # Reporting
    def get_stats(self) -> Dict[str, Any]:
        """Get pipeline statistics."""
        with self.get_connection() as conn:
            stats = {}

            cursor = conn.execute("SELECT maturity, COUNT(*) as count FROM voice_profiles GROUP BY maturity")
            stats['profiles_by_maturity'] = {row['maturity']: row['count'] for row in cursor.fetchall()}

            cursor = conn.execute("SELECT classification, COUNT(*) as count FROM edit_records GROUP BY classification")
            stats['edits_by_classification'] = {row['classification']: row['count'] for row in cursor.fetchall()}

            cursor = conn.execute("SELECT COUNT(*) as count FROM proposals")
            stats['saved_proposals'] = cursor.fetchone()['count']

            cursor = conn.execute("SELECT period_key, committed_spend FROM cost_ledger ORDER BY period_key DESC LIMIT 1")
            row = cursor.fetchone()
            stats['current_period_spend'] = {row['period_key']: row['committed_spend']} if row else {}

            return stats
