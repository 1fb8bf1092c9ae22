"""
FastAPI entry point for the Hook + Script video generator.
"""
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from hookreel.api.job_service import JobService, SettingsStore
from hookreel.api.pipeline_service import PipelineService
from hookreel.config import settings
from hookreel.models import GenerationRequest, UserSettings
from hookreel.orchestration.events import EventChannel
from hookreel.orchestration.job import GenerationJob

logger = logging.getLogger(__name__)


class JobResponse(BaseModel):
    """Response model for job status."""
    job_id: str
    status: str
    message: str
    created_at: str
    metadata: Optional[Dict[str, Any]] = None


def apply_user_defaults(request: GenerationRequest, stored: Optional[UserSettings]) -> GenerationRequest:
    """Fill fields the caller left empty from the user's saved settings."""
    if stored is None:
        return request
    updates = {
        field: getattr(stored, field)
        for field in ("voice_id", "tts_model", "caption_style", "font")
        if getattr(request, field) is None and getattr(stored, field) is not None
    }
    return request.model_copy(update=updates) if updates else request


def create_app(
    pipeline_service: Optional[PipelineService] = None,
    settings_store: Optional[SettingsStore] = None,
    job_service: Optional[JobService] = None,
) -> FastAPI:
    app = FastAPI(
        title="Hookreel API",
        description="API for generating narrated vertical videos from a hook and a script",
        version="1.0.0"
    )

    # CORS middleware for the web frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure this properly for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # share the same job_service instance between the API and the pipeline
    job_service = job_service or (pipeline_service.job_service if pipeline_service else JobService())
    pipeline_service = pipeline_service or PipelineService(job_service=job_service)
    settings_store = settings_store or SettingsStore()

    app.state.job_service = job_service
    app.state.pipeline_service = pipeline_service
    app.state.settings_store = settings_store

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "message": "Hookreel API is running"}

    @app.get("/health")
    async def health():
        """Detailed health check."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "jobs_path": str(settings.JOBS_OUTPUT_PATH)
        }

    @app.post("/api/generate-video")
    def generate_video(request: GenerationRequest):
        """
        Start a generation and stream its status events.

        The response body is a sequence of JSON objects, each followed by a
        blank line, ending with a `video_complete` or `error` event.
        """
        if not request.hook.strip() or not request.script.strip():
            raise HTTPException(status_code=400, detail="Hook and script text are required")

        request = apply_user_defaults(request, settings_store.get(request.user_id))
        settings_store.put(
            request.user_id,
            UserSettings(
                voice_id=request.voice_id,
                tts_model=request.tts_model,
                caption_style=request.caption_style,
                font=request.font,
            ),
        )

        channel = EventChannel()
        job = GenerationJob(channel=channel)
        logger.info(f"Starting generation job {job.job_id} for user {request.user_id}")
        worker = threading.Thread(
            target=pipeline_service.run_generation,
            args=(request, channel, job),
            name=f"generation-{job.job_id}",
            daemon=True,
        )
        worker.start()
        return StreamingResponse(
            channel.stream(),
            media_type="application/json",
            headers={"X-Job-Id": job.job_id, "Cache-Control": "no-cache"},
        )

    @app.get("/api/jobs/{job_id}", response_model=JobResponse)
    async def get_job_status(job_id: str):
        job = job_service.get_job(job_id)
        if not job:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return JobResponse(
            job_id=job_id,
            status=job.get("status", "unknown"),
            message=job.get("message", ""),
            created_at=job.get("created_at", ""),
            metadata=job.get("metadata", {}),
        )

    @app.get("/api/jobs")
    async def list_jobs(limit: int = 10, offset: int = 0):
        """List jobs, newest first."""
        jobs = job_service.list_jobs(limit=limit, offset=offset)
        return {"jobs": jobs, "total": len(jobs)}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
