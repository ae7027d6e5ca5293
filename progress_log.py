"""
Append-only progress log for copy / owner change jobs

One CSV row per processed item plus run-level status rows.
"""
import csv
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

MAX_CELL_LENGTH = 4999

COLUMNS = [
    'Status', 'Title', 'Original link', 'Original ID', 'Link', 'ID',
    'Time completed', 'Parent folder link', 'File size'
]


class ItemStatus:
    COPIED = 'Copied'
    SHORTCUT_CREATED = 'Shortcut created'
    OWNER_CHANGED = 'Owner changed'
    PERMISSIONS_REMOVED = 'Permissions removed'
    OWNER_CHANGED_AND_PERMISSIONS_REMOVED = 'Owner changed and permissions removed'


class RunMessage:
    START_COPYING = 'Started copying'
    START_CHANGE_OWNER = 'Started change owner operation'
    COMPLETE = 'Complete'
    SINGLE_RUN_EXCEEDED = 'Paused due to quota limits - operation will resume in {minutes} minutes'
    MAX_RUNTIME_EXCEEDED = (
        'Reached daily maximum run time. The operation must pause for 24 hours '
        'to reset quotas, and will resume at that time.'
    )
    USER_STOPPED = 'Stopped manually by user. Use "resume" to restart the operation'


def file_link(node_id: Optional[str]) -> str:
    if node_id:
        return f'https://drive.google.com/open?id={node_id}'
    return ''


def original_link_description(node_id: str) -> str:
    if node_id:
        return 'ORIGINAL: ' + file_link(node_id)
    return ''


def bytes_to_human_readable(size: Optional[int], decimals: int = 2) -> str:
    if not size:
        return ''
    unit = 1024
    abbreviations = ['bytes', 'KB', 'MB', 'GB', 'TB', 'PB', 'EB', 'ZB', 'YB']
    exponent = min(int(math.floor(math.log(size, unit))), len(abbreviations) - 1)
    value = round(size / unit ** exponent, decimals)
    if value == int(value):
        value = int(value)
    return f'{value} {abbreviations[exponent]}'


@dataclass
class LogEntry:
    """One outcome reported by the engine"""

    status: str
    source_id: str = ''
    source_title: str = ''
    dest_id: Optional[str] = None
    parent_id: Optional[str] = None
    size_bytes: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(ZoneInfo('UTC')))
    is_error: bool = False


class ProgressLog:
    """CSV backed append-only log sink"""

    def __init__(self, path, timezone: str = 'UTC'):
        """
        Initialize progress log

        Args:
            path: CSV file path, created with a header row if missing
            timezone: Timezone used for the completion time column
        """
        self.path = Path(path)
        self.timezone = ZoneInfo(timezone)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if not self.path.exists() or self.path.stat().st_size == 0:
            with open(self.path, 'w', newline='', encoding='utf-8') as f:
                csv.writer(f).writerow(COLUMNS)

    def write(self, entry: LogEntry):
        """Append one item outcome"""
        timestamp = entry.timestamp.astimezone(self.timezone)
        values = [
            entry.status,
            entry.source_title,
            file_link(entry.source_id),
            entry.source_id,
            file_link(entry.dest_id),
            entry.dest_id or '',
            timestamp.strftime('%m-%d-%y %I:%M:%S %p'),
            file_link(entry.parent_id),
            bytes_to_human_readable(entry.size_bytes),
        ]
        self._append(values)

        if entry.is_error:
            logger.warning(f"✗ {entry.source_title} ({entry.source_id}) - {entry.status}")
        else:
            logger.debug(f"✓ {entry.status}: {entry.source_title} ({entry.source_id})")

    def log_status(self, message: str):
        """Append a run-level status row"""
        self.write(LogEntry(status=message))

    def _append(self, values):
        values = [str(v)[:MAX_CELL_LENGTH] if v is not None else '' for v in values]
        with open(self.path, 'a', newline='', encoding='utf-8') as f:
            csv.writer(f).writerow(values)

    def read_rows(self):
        """All data rows as dictionaries keyed by column name"""
        with open(self.path, newline='', encoding='utf-8') as f:
            return list(csv.DictReader(f))
