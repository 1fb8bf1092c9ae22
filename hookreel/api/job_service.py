"""
Job tracking and per-user settings for the API layer.
"""
import json
import logging
import os
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional

from hookreel.config import settings
from hookreel.models import UserSettings

logger = logging.getLogger(__name__)


class JobService:
    """Service for managing job status and metadata."""

    def __init__(self):
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.lock = Lock()

    def _save_job_status(self, job_id: str):
        """Save job status and message to the job's metadata file."""
        job_dir = settings.JOBS_OUTPUT_PATH / job_id
        # job directory is created by the pipeline's log handler; don't recreate it here
        if job_id not in self.jobs or not job_dir.exists():
            return

        metadata_path = job_dir / "job_metadata.json"
        job = self.jobs[job_id]
        metadata = dict(job.get("metadata", {}))
        metadata.update({
            "status": job["status"],
            "message": job.get("message", ""),
            "created_at": job["created_at"],
            "updated_at": datetime.now().isoformat(),
        })
        try:
            with open(metadata_path, 'w', encoding='utf-8') as f:
                json.dump(metadata, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            logger.debug(f"Saved job status for {job_id}")
        except OSError as e:
            logger.warning(f"Failed to save job status for {job_id}: {e}")

    def create_job(self, job_id: str, user_id: str, metadata: Optional[Dict[str, Any]] = None):
        """Create a new job record."""
        with self.lock:
            self.jobs[job_id] = {
                "job_id": job_id,
                "status": "created",
                "message": "Job created, waiting to start",
                "created_at": datetime.now().isoformat(),
                "metadata": {"user_id": user_id, **(metadata or {})},
            }
            self._save_job_status(job_id)

    def update_job(self, job_id: str, status: str, message: str = "", metadata: Optional[Dict[str, Any]] = None):
        """Record the latest stage of a job."""
        with self.lock:
            job = self.jobs.setdefault(job_id, {
                "job_id": job_id,
                "created_at": datetime.now().isoformat(),
                "metadata": {},
            })
            job["status"] = status
            job["message"] = message
            if metadata:
                job["metadata"].update(metadata)
            self._save_job_status(job_id)

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get job by ID."""
        with self.lock:
            return self.jobs.get(job_id)

    def list_jobs(self, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        """List jobs with pagination."""
        with self.lock:
            sorted_jobs = sorted(
                self.jobs.values(),
                key=lambda x: x.get("created_at", ""),
                reverse=True
            )
            return sorted_jobs[offset:offset + limit]


class SettingsStore:
    """
    Per-user settings shared by concurrent requests. Records are replaced as a
    whole, so concurrent writers never interleave fields (last write wins).
    """

    def __init__(self):
        self._records: Dict[str, UserSettings] = {}
        self._lock = Lock()

    def get(self, user_id: str) -> Optional[UserSettings]:
        with self._lock:
            return self._records.get(user_id)

    def put(self, user_id: str, user_settings: UserSettings) -> UserSettings:
        stamped = user_settings.model_copy(update={"last_updated": datetime.now().isoformat()})
        with self._lock:
            self._records[user_id] = stamped
        logger.info(f"Saved settings for user {user_id}")
        return stamped
