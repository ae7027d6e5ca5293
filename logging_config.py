"""
Logging configuration for tree copy jobs
"""
import logging
import sys
from pathlib import Path
from datetime import datetime

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Drive client libraries log every discovery and HTTP round trip
QUIET_LOGGERS = {
    'googleapiclient.discovery_cache': logging.ERROR,
    'googleapiclient.discovery': logging.WARNING,
    'google.auth': logging.WARNING,
    'urllib3': logging.WARNING,
}


def setup_logging(log_level='INFO', log_file=None, console=True):
    """
    Configure the root logger for a CLI invocation

    Args:
        log_level: Console logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Application log file, always written at DEBUG (optional)
        console: Whether to log to stdout
    """
    level = getattr(logging, log_level.upper())
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if log_file else level)
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = []

    if console:
        # stdout only; tqdm draws its bar on stderr
        handlers.append((logging.StreamHandler(sys.stdout), level))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append((logging.FileHandler(log_file, mode='a', encoding='utf-8'), logging.DEBUG))

    for handler, handler_level in handlers:
        handler.setLevel(handler_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    root.debug(f"Logging initialized - Level: {log_level}, file: {log_file or 'none'}")


class JobLogger:
    """Logger with job-level banners"""

    def __init__(self, name):
        self.logger = logging.getLogger(name)
        self.slice_start = None

    def info(self, message):
        self.logger.info(message)

    def warning(self, message):
        self.logger.warning(message)

    def error(self, message, exc_info=False):
        self.logger.error(message, exc_info=exc_info)

    def start_job(self, kind: str, job_id: str, folder_id: str):
        """Log job creation"""
        self.logger.info("="*80)
        self.logger.info(f"JOB STARTED - {kind} ({job_id})")
        self.logger.info(f"Folder: {folder_id}")
        self.logger.info("="*80)

    def start_slice(self, job_id: str):
        self.slice_start = datetime.now()
        self.logger.info("-"*80)
        self.logger.info(f"SLICE START - {job_id} at {self.slice_start.isoformat()}")

    def end_slice(self, job_id: str, reason: str, stats: dict, delay_minutes=None):
        """Log slice end"""
        duration = datetime.now() - self.slice_start if self.slice_start else None
        self.logger.info(f"SLICE END - {job_id}: {reason}")
        if duration:
            self.logger.info(f"Duration: {duration}")
        self.logger.info(f"Processed: {stats.get('processed', 0)}")
        self.logger.info(f"Failed: {stats.get('failed', 0)}")
        self.logger.info(f"Skipped: {stats.get('skipped', 0)}")
        if delay_minutes is not None:
            self.logger.info(f"Next slice in {delay_minutes:g} minutes")
        self.logger.info("-"*80)

    def end_job(self, summary: dict):
        """Log job completion"""
        self.logger.info("="*80)
        self.logger.info(f"JOB COMPLETED - {summary.get('job_id')}")
        self.logger.info(f"Folders: {summary.get('folders_mapped', 0)}")
        self.logger.info(f"Items: {summary.get('items_completed', 0)}")
        self.logger.info("="*80)


def create_logger(name: str) -> JobLogger:
    """Create a job logger instance"""
    return JobLogger(name)
