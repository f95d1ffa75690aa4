"""
SQLite storage for users, rules, workflows, alerts and holdings.

Nested values (preferences, action params, response times) live in JSON
text columns; see repository.py for the mapping.
"""

import sqlite3
from pathlib import Path
from typing import Optional


class Database:
    """Owns the single SQLite connection shared by the repositories."""

    def __init__(self, db_path: str = ":memory:"):
        """
        Args:
            db_path: File path, or ":memory:" for a throwaway database
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._open()

    def _open(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(self.db_path)
        self._connection.row_factory = sqlite3.Row
        # Rules cascade with their owner
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database is closed")
        return self._connection

    def initialize(self) -> None:
        """Create tables and indexes; safe to call on an existing file."""
        cursor = self.connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                address TEXT PRIMARY KEY,
                profile_name TEXT,
                notifications TEXT NOT NULL,
                integrations TEXT NOT NULL,
                usage TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS notification_rules (
                id TEXT PRIMARY KEY,
                user_address TEXT NOT NULL,
                name TEXT NOT NULL,
                rule_trigger TEXT NOT NULL,
                rule_action TEXT NOT NULL,
                message TEXT NOT NULL,
                FOREIGN KEY (user_address) REFERENCES users(address) ON DELETE CASCADE
            )
        """)

        # notification_rule_id may point at a rule that no longer exists
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                user_address TEXT,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                trigger_type TEXT NOT NULL,
                source_address TEXT NOT NULL,
                action_type TEXT NOT NULL,
                action_params TEXT NOT NULL,
                message TEXT,
                notification_rule_id TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                execution_count INTEGER NOT NULL DEFAULT 0,
                previous_execution_count INTEGER,
                success_rate REAL NOT NULL DEFAULT 0,
                response_times TEXT NOT NULL DEFAULT '[]',
                execution_timestamps TEXT NOT NULL DEFAULT '[]',
                last_triggered TIMESTAMP,
                portfolio_alert_id TEXT,
                created_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS portfolio_alerts (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                type TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                threshold TEXT NOT NULL,
                initial_value REAL,
                status TEXT NOT NULL,
                action_type TEXT NOT NULL,
                action_params TEXT NOT NULL,
                user_address TEXT,
                last_triggered TIMESTAMP,
                created_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS portfolio_assets (
                symbol TEXT PRIMARY KEY,
                amount REAL NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_workflows_user ON workflows(user_address)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_workflows_source
            ON workflows(source_address)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_rules_user ON notification_rules(user_address)
        """)

        self.connection.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
