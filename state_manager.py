"""
State management for persisting resumable jobs between invocations
"""
import sqlite3
import logging
from datetime import datetime
from typing import Optional, List, Dict
import json

from job_state import JobState

logger = logging.getLogger(__name__)


class StateManager:
    """Stores one JobState record per job plus a history of slice runs"""

    def __init__(self, db_file: str):
        """
        Initialize state manager

        Args:
            db_file: SQLite database file path
        """
        self.db_file = db_file
        self.conn = None
        self._init_database()

    def _init_database(self):
        """Initialize database tables"""
        self.conn = sqlite3.connect(self.db_file, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        cursor = self.conn.cursor()

        # Jobs table
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS jobs (
                job_id TEXT PRIMARY KEY,
                kind TEXT,
                root_folder_id TEXT,
                state TEXT,
                stop_requested INTEGER DEFAULT 0,
                created_time TEXT,
                last_updated TEXT
            )
        ''')

        # Slice runs table
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS slice_runs (
                run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT,
                start_time TEXT,
                end_time TEXT,
                status TEXT,
                items_processed INTEGER DEFAULT 0,
                items_failed INTEGER DEFAULT 0,
                next_delay_minutes REAL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_jobs_root ON jobs(root_folder_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_runs_job ON slice_runs(job_id)')

        self.conn.commit()
        logger.debug(f"Database initialized: {self.db_file}")

    def save(self, state: JobState):
        """Insert or update the job record"""
        now = datetime.now().isoformat()
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO jobs (job_id, kind, root_folder_id, state, created_time, last_updated)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_id) DO UPDATE SET
                state = excluded.state,
                last_updated = excluded.last_updated
        ''', (state.job_id, state.kind, state.options.src_folder_id,
              json.dumps(state.to_dict()), now, now))

        self.conn.commit()

    def load(self, job_id: str) -> Optional[JobState]:
        """Load a job record, or None if it does not exist"""
        cursor = self.conn.cursor()
        cursor.execute('SELECT state FROM jobs WHERE job_id = ?', (job_id,))

        row = cursor.fetchone()
        if not row:
            return None
        return JobState.from_dict(json.loads(row['state']))

    def delete(self, job_id: str):
        cursor = self.conn.cursor()
        cursor.execute('DELETE FROM jobs WHERE job_id = ?', (job_id,))
        self.conn.commit()
        logger.info(f"Deleted job state: {job_id}")

    def request_stop(self, job_id: str) -> bool:
        """Set the cooperative stop flag; returns False for an unknown job"""
        cursor = self.conn.cursor()
        cursor.execute('''
            UPDATE jobs SET stop_requested = 1, last_updated = ?
            WHERE job_id = ?
        ''', (datetime.now().isoformat(), job_id))

        self.conn.commit()
        return cursor.rowcount > 0

    def clear_stop(self, job_id: str):
        cursor = self.conn.cursor()
        cursor.execute('UPDATE jobs SET stop_requested = 0 WHERE job_id = ?', (job_id,))
        self.conn.commit()

    def is_stop_requested(self, job_id: str) -> bool:
        cursor = self.conn.cursor()
        cursor.execute('SELECT stop_requested FROM jobs WHERE job_id = ?', (job_id,))

        row = cursor.fetchone()
        return bool(row and row['stop_requested'])

    def list_jobs(self) -> List[Dict]:
        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT job_id, kind, root_folder_id, stop_requested, created_time, last_updated
            FROM jobs ORDER BY created_time
        ''')
        return [dict(row) for row in cursor.fetchall()]

    def start_slice_run(self, job_id: str) -> int:
        """
        Record the start of one invocation

        Returns:
            Run ID
        """
        cursor = self.conn.cursor()
        cursor.execute('''
            INSERT INTO slice_runs (job_id, start_time, status)
            VALUES (?, ?, ?)
        ''', (job_id, datetime.now().isoformat(), 'in_progress'))

        self.conn.commit()
        return cursor.lastrowid

    def end_slice_run(self, run_id: int, status: str, summary: Dict):
        """
        Record the end of one invocation

        Args:
            run_id: Run ID
            status: Final status
            summary: Counters from the slice
        """
        cursor = self.conn.cursor()
        cursor.execute('''
            UPDATE slice_runs
            SET end_time = ?, status = ?,
                items_processed = ?, items_failed = ?,
                next_delay_minutes = ?
            WHERE run_id = ?
        ''', (
            datetime.now().isoformat(),
            status,
            summary.get('processed', 0),
            summary.get('failed', 0),
            summary.get('next_delay_minutes'),
            run_id
        ))

        self.conn.commit()
        logger.debug(f"Ended slice run {run_id}: {status}")

    def get_slice_runs(self, job_id: str) -> List[Dict]:
        cursor = self.conn.cursor()
        cursor.execute('''
            SELECT * FROM slice_runs WHERE job_id = ? ORDER BY run_id
        ''', (job_id,))
        return [dict(row) for row in cursor.fetchall()]

    def export_state_report(self, job_id: str, output_file: str) -> bool:
        """Export the current state of a job to JSON"""
        state = self.load(job_id)
        if state is None:
            logger.error(f"No saved state for job {job_id}")
            return False

        report = {
            'timestamp': datetime.now().isoformat(),
            'progress': state.summary(),
            'retry_queue': [
                {'id': i.id, 'title': i.title, 'attempt': i.attempt, 'error': i.error}
                for i in state.retry_queue
            ],
            'slice_runs': self.get_slice_runs(job_id),
        }

        with open(output_file, 'w') as f:
            json.dump(report, f, indent=2)

        logger.info(f"State report exported to {output_file}")
        return True

    def close(self):
        """Close database connection"""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
