"""
Logging setup shared by the API, the pipeline service and the scripts.

Jobs run concurrently in one process, so every job's file handler carries a
JobLogFilter: a record reaches jobs/<job_id>/pipeline.log only when it was
logged from a context bound to that job (see `bind_job`).
"""
import contextvars
import logging
import sys
from pathlib import Path
from typing import Optional

from hookreel.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(job_id)s] %(name)s: %(message)s"

current_job_id: contextvars.ContextVar = contextvars.ContextVar("current_job_id", default=None)

_console_configured = False


class JobLogFilter(logging.Filter):
    """Stamps `record.job_id`; with a job_id set, drops records from other jobs."""

    def __init__(self, job_id: Optional[str] = None):
        super().__init__()
        self.job_id = job_id

    def filter(self, record: logging.LogRecord) -> bool:
        bound = current_job_id.get()
        record.job_id = bound or "-"
        return self.job_id is None or bound == self.job_id


def bind_job(job_id: Optional[str]):
    """Attribute records logged from the current context (thread) to `job_id`."""
    return current_job_id.set(job_id)


def setup_logging(job_id: Optional[str] = None, log_level: str = "INFO") -> Optional[logging.Handler]:
    """
    Configure console logging (once per process) and, when a job id is given,
    bind the calling context to it and attach a file handler writing that
    job's records to jobs/<job_id>/pipeline.log.

    Returns the job file handler so the caller can detach it when the job ends.
    """
    global _console_configured

    root = logging.getLogger()
    root.setLevel(log_level.upper())

    if not _console_configured:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        console.addFilter(JobLogFilter())
        root.addHandler(console)
        _console_configured = True

    if not job_id:
        return None

    bind_job(job_id)
    job_dir: Path = settings.JOBS_OUTPUT_PATH / job_id
    job_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(job_dir / "pipeline.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.addFilter(JobLogFilter(job_id))
    root.addHandler(file_handler)
    return file_handler


def teardown_job_logging(handler: Optional[logging.Handler]):
    """Detach and close a handler returned by setup_logging, and unbind the job."""
    if handler is None:
        return
    bind_job(None)
    logging.getLogger().removeHandler(handler)
    handler.close()
