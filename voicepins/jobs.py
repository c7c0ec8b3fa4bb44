"""
Job store for tour generation.

Every operation is a read-modify-write of one row in its own session. A job
is owned end-to-end by the single worker task running it, so writes for the
same id never race; pollers only read.

    pending -> generating_content <-> generating_audio -> completed | partial | failed
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from voicepins.errors import JobNotFoundError, JobStateError
from voicepins.models import Job, new_job_id, utcnow
from voicepins.schemas import TourGenerationRequest

logger = logging.getLogger(__name__)

PENDING = "pending"
GENERATING_CONTENT = "generating_content"
GENERATING_AUDIO = "generating_audio"
COMPLETED = "completed"
PARTIAL = "partial"
FAILED = "failed"

ACTIVE_STATES = {PENDING, GENERATING_CONTENT, GENERATING_AUDIO}
TERMINAL_STATES = {COMPLETED, PARTIAL, FAILED}


class JobStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def create(self, request: TourGenerationRequest, job_id: Optional[str] = None) -> Job:
        job = Job(
            id=job_id or new_job_id(),
            device_id=request.device_id,
            status=PENDING,
            progress={"totalPins": request.pin_count, "completedPins": 0, "currentStep": "Initializing"},
            request=request.model_dump(mode="json", by_alias=True),
        )
        with Session(self.engine) as s:
            s.add(job)
            s.commit()
            s.refresh(job)
        logger.info("Created job %s for device %s (%d pins)", job.id, job.device_id, request.pin_count)
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with Session(self.engine) as s:
            return s.get(Job, job_id)

    def list_by_device(self, device_id: str) -> List[Job]:
        with Session(self.engine) as s:
            stmt = select(Job).where(Job.device_id == device_id).order_by(Job.created_at.desc())
            return list(s.exec(stmt).all())

    def _update(self, job_id: str, **fields) -> Job:
        with Session(self.engine) as s:
            job = s.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status in TERMINAL_STATES:
                raise JobStateError(f"job {job_id} is already {job.status}")
            for k, v in fields.items():
                setattr(job, k, v)
            job.updated_at = utcnow()
            s.add(job)
            s.commit()
            s.refresh(job)
            return job

    def _merged_progress(self, job_id: str, **changes) -> Dict:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        progress = dict(job.progress or {})
        progress.update({k: v for k, v in changes.items() if v is not None})
        total = int(progress.get("totalPins", 0))
        progress["completedPins"] = max(0, min(int(progress.get("completedPins", 0)), total))
        return progress

    def update_status(self, job_id: str, status: str) -> Job:
        if status not in ACTIVE_STATES:
            raise ValueError(f"use complete/fail/partial_complete to enter {status!r}")
        return self._update(job_id, status=status)

    def update_progress(
        self,
        job_id: str,
        *,
        completed_pins: Optional[int] = None,
        current_step: Optional[str] = None,
    ) -> Job:
        progress = self._merged_progress(job_id, completedPins=completed_pins, currentStep=current_step)
        return self._update(job_id, progress=progress)

    def complete(self, job_id: str, result: Dict, costs: Optional[Dict] = None) -> Job:
        job = self._finish(job_id, COMPLETED, "Complete", result=result, costs=costs)
        logger.info("Job %s completed with %d pins", job_id, len(result.get("pins", [])))
        return job

    def partial_complete(self, job_id: str, result: Dict, error: Dict, costs: Optional[Dict] = None) -> Job:
        job = self._finish(job_id, PARTIAL, "Partially complete", result=result, error=error, costs=costs)
        logger.info("Job %s partially completed: %s", job_id, error.get("message"))
        return job

    def fail(self, job_id: str, error: Dict) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        progress = dict(job.progress or {})
        progress["currentStep"] = "Failed"
        logger.info("Job %s failed: %s", job_id, error.get("code"))
        return self._update(job_id, status=FAILED, error=error, progress=progress)

    def _finish(self, job_id: str, status: str, step: str, **fields) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        progress = dict(job.progress or {})
        progress["completedPins"] = progress.get("totalPins", 0)
        progress["currentStep"] = step
        return self._update(job_id, status=status, progress=progress, **fields)
