"""
Database Module
SQLite database for generation jobs, the video render queue, and presets
"""
import json
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

# Default database file path (override with DATABASE_PATH)
DEFAULT_DB_PATH = os.path.join(os.path.dirname(__file__), 'catalyst.db')

JSON_COLUMNS = ('options', 'settings')


def get_db_path() -> str:
    return os.getenv('DATABASE_PATH', DEFAULT_DB_PATH)


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(get_db_path())
    conn.row_factory = sqlite3.Row  # Enable dict-like access
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db():
    """Initialize database tables."""
    with get_db() as conn:
        cursor = conn.cursor()

        # Generation jobs - one per pipeline run
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                job_type TEXT NOT NULL DEFAULT 'generate',
                status TEXT DEFAULT 'pending',
                product_name TEXT,
                campaign_name TEXT,
                description TEXT,
                options TEXT,
                total_images INTEGER DEFAULT 0,
                completed_images INTEGER DEFAULT 0,
                drive_folder_url TEXT,
                error_message TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                started_at TIMESTAMP,
                completed_at TIMESTAMP
            )
        ''')

        # Video jobs - fal.ai render queue
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS video_jobs (
                id TEXT PRIMARY KEY,
                status TEXT DEFAULT 'pending',
                session_id TEXT,
                perspective_id TEXT,
                prompt TEXT NOT NULL,
                image_data TEXT NOT NULL,
                aspect_ratio TEXT DEFAULT '1:1',
                campaign_name TEXT,
                save_to_drive INTEGER DEFAULT 0,
                status_message TEXT,
                video_url TEXT,
                drive_url TEXT,
                error_message TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                started_at TIMESTAMP,
                completed_at TIMESTAMP
            )
        ''')

        # Saved creative settings
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS presets (
                name TEXT PRIMARY KEY,
                settings TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_video_jobs_status ON video_jobs(status)')


def _row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
    record = dict(row)
    for column in JSON_COLUMNS:
        if record.get(column):
            try:
                record[column] = json.loads(record[column])
            except ValueError:
                pass
    if 'save_to_drive' in record:
        record['save_to_drive'] = bool(record['save_to_drive'])
    return record


def _status_timestamps(status: str, updates: list, params: list, finished=('completed', 'failed', 'cancelled')):
    if status == 'processing':
        updates.append('started_at = ?')
        params.append(datetime.utcnow().isoformat())
    elif status in finished:
        updates.append('completed_at = ?')
        params.append(datetime.utcnow().isoformat())


# ============ Jobs ============

def create_job(
    job_type: str = 'generate',
    product_name: str = None,
    campaign_name: str = None,
    description: str = None,
    options: dict = None,
    total_images: int = 0,
    job_id: str = None
) -> str:
    """Create a new job and return its ID."""
    job_id = job_id or str(uuid.uuid4())
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO jobs (id, job_type, product_name, campaign_name, description, options, total_images)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (job_id, job_type, product_name, campaign_name, description,
              json.dumps(options) if options is not None else None, total_images))
    return job_id


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    """Get job by ID."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM jobs WHERE id = ?', (job_id,))
        row = cursor.fetchone()
        return _row_to_dict(row) if row else None


def update_job_status(
    job_id: str,
    status: str,
    error_message: str = None,
    drive_folder_url: str = None,
    completed_images: int = None
):
    """Update job status."""
    with get_db() as conn:
        cursor = conn.cursor()
        updates = ['status = ?']
        params = [status]
        _status_timestamps(status, updates, params)

        if error_message is not None:
            updates.append('error_message = ?')
            params.append(error_message)

        if drive_folder_url is not None:
            updates.append('drive_folder_url = ?')
            params.append(drive_folder_url)

        if completed_images is not None:
            updates.append('completed_images = ?')
            params.append(completed_images)

        params.append(job_id)
        cursor.execute(f'''
            UPDATE jobs SET {', '.join(updates)} WHERE id = ?
        ''', params)


def list_jobs(
    job_type: str = None,
    status: str = None,
    limit: int = 50,
    offset: int = 0
) -> List[Dict[str, Any]]:
    """List jobs with optional filters, newest first."""
    with get_db() as conn:
        cursor = conn.cursor()
        query = 'SELECT * FROM jobs WHERE 1=1'
        params = []

        if job_type:
            query += ' AND job_type = ?'
            params.append(job_type)
        if status:
            query += ' AND status = ?'
            params.append(status)

        query += ' ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?'
        params.extend([limit, offset])

        cursor.execute(query, params)
        return [_row_to_dict(row) for row in cursor.fetchall()]


def get_jobs_count(job_type: str = None, status: str = None) -> int:
    """Get total count of jobs matching filters."""
    with get_db() as conn:
        cursor = conn.cursor()
        query = 'SELECT COUNT(*) as count FROM jobs WHERE 1=1'
        params = []

        if job_type:
            query += ' AND job_type = ?'
            params.append(job_type)
        if status:
            query += ' AND status = ?'
            params.append(status)

        cursor.execute(query, params)
        return cursor.fetchone()['count']


def delete_job(job_id: str) -> bool:
    """Delete a job by ID. Returns True if deleted."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('DELETE FROM jobs WHERE id = ?', (job_id,))
        return cursor.rowcount > 0


# ============ Video jobs ============

def create_video_job(
    prompt: str,
    image_data: str,
    session_id: str = None,
    perspective_id: str = None,
    aspect_ratio: str = '1:1',
    campaign_name: str = None,
    save_to_drive: bool = False
) -> str:
    """Create a video job and return its ID. image_data is a data URL."""
    job_id = str(uuid.uuid4())
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO video_jobs (id, session_id, perspective_id, prompt, image_data,
                                    aspect_ratio, campaign_name, save_to_drive)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', (job_id, session_id, perspective_id, prompt, image_data,
              aspect_ratio, campaign_name, int(bool(save_to_drive))))
    return job_id


def get_video_job(job_id: str) -> Optional[Dict[str, Any]]:
    """Get video job by ID."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM video_jobs WHERE id = ?', (job_id,))
        row = cursor.fetchone()
        return _row_to_dict(row) if row else None


def update_video_job_status(
    job_id: str,
    status: str,
    error_message: str = None,
    status_message: str = None,
    video_url: str = None,
    drive_url: str = None
):
    """Update video job status."""
    with get_db() as conn:
        cursor = conn.cursor()
        updates = ['status = ?']
        params = [status]
        _status_timestamps(status, updates, params, finished=('completed', 'failed'))

        if error_message is not None:
            updates.append('error_message = ?')
            params.append(error_message)

        if status_message is not None:
            updates.append('status_message = ?')
            params.append(status_message)

        if video_url is not None:
            updates.append('video_url = ?')
            params.append(video_url)

        if drive_url is not None:
            updates.append('drive_url = ?')
            params.append(drive_url)

        params.append(job_id)
        cursor.execute(f'''
            UPDATE video_jobs SET {', '.join(updates)} WHERE id = ?
        ''', params)


def update_video_job_message(job_id: str, status_message: str):
    """Record the latest progress message without touching status."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('UPDATE video_jobs SET status_message = ? WHERE id = ?', (status_message, job_id))


def get_next_pending_video_job() -> Optional[Dict[str, Any]]:
    """Get the next pending video job (FIFO order)."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT * FROM video_jobs
            WHERE status = 'pending'
            ORDER BY created_at ASC, rowid ASC
            LIMIT 1
        ''')
        row = cursor.fetchone()
        return _row_to_dict(row) if row else None


def list_video_jobs(
    status: str = None,
    session_id: str = None,
    limit: int = 50,
    offset: int = 0
) -> List[Dict[str, Any]]:
    """List video jobs with optional filters, newest first (without image payloads)."""
    with get_db() as conn:
        cursor = conn.cursor()
        query = '''SELECT id, status, session_id, perspective_id, prompt, aspect_ratio, campaign_name,
                          save_to_drive, status_message, video_url, drive_url, error_message,
                          created_at, started_at, completed_at
                   FROM video_jobs WHERE 1=1'''
        params = []

        if status:
            query += ' AND status = ?'
            params.append(status)
        if session_id:
            query += ' AND session_id = ?'
            params.append(session_id)

        query += ' ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?'
        params.extend([limit, offset])

        cursor.execute(query, params)
        return [_row_to_dict(row) for row in cursor.fetchall()]


def get_video_jobs_count(status: str = None, session_id: str = None) -> int:
    """Get count of video jobs, optionally by status and session."""
    with get_db() as conn:
        cursor = conn.cursor()
        query = 'SELECT COUNT(*) as count FROM video_jobs WHERE 1=1'
        params = []

        if status:
            query += ' AND status = ?'
            params.append(status)
        if session_id:
            query += ' AND session_id = ?'
            params.append(session_id)

        cursor.execute(query, params)
        return cursor.fetchone()['count']


def delete_video_job(job_id: str) -> bool:
    """Delete a video job by ID. Returns True if deleted."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('DELETE FROM video_jobs WHERE id = ?', (job_id,))
        return cursor.rowcount > 0


def reset_stuck_video_jobs() -> int:
    """Put jobs left 'processing' by a previous run back in the queue."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("UPDATE video_jobs SET status = 'pending' WHERE status = 'processing'")
        return cursor.rowcount


# ============ Presets ============

def save_preset(name: str, settings: dict):
    """Create or overwrite a preset."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO presets (name, settings) VALUES (?, ?)
            ON CONFLICT(name) DO UPDATE SET settings = excluded.settings, updated_at = CURRENT_TIMESTAMP
        ''', (name, json.dumps(settings)))


def get_preset(name: str) -> Optional[Dict[str, Any]]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM presets WHERE name = ?', (name,))
        row = cursor.fetchone()
        return _row_to_dict(row) if row else None


def list_presets() -> List[Dict[str, Any]]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM presets ORDER BY name COLLATE NOCASE ASC')
        return [_row_to_dict(row) for row in cursor.fetchall()]


def delete_preset(name: str) -> bool:
    """Delete a preset by name. Returns True if deleted."""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('DELETE FROM presets WHERE name = ?', (name,))
        return cursor.rowcount > 0


# Initialize database on import
init_db()
