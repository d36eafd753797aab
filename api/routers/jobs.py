"""
Jobs router - track background import and calculation jobs.
"""

import json
import logging
from datetime import datetime
from typing import Optional

import redis
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import get_db, get_current_user
from api.schemas.job_schema import (
    JobStatusResponse, JobProgressResponse, JobListResponse, JobListItem, JobStatusEnum, JobTypeEnum
)
from backend.models.job import JobRun, JobStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/jobs', tags=['jobs'])

# Redis client for progress tracking
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def _get_job(db: Session, job_id: str) -> JobRun:
    job_run = db.query(JobRun).filter_by(job_id=job_id).first()
    if not job_run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    return job_run


@router.get('', response_model=JobListResponse)
async def list_jobs(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    job_type: Optional[JobTypeEnum] = Query(None, description="Filter by job type"),
    status: Optional[JobStatusEnum] = Query(None, description="Filter by status"),
    closure_id: Optional[int] = Query(None, description="Filter by closure"),
    db: Session = Depends(get_db)
):
    """
    List jobs, newest first.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/jobs?job_type=import&status=success&page=1"
    ```
    """
    query = db.query(JobRun)

    if job_type:
        query = query.filter_by(job_type=job_type.value)
    if status:
        query = query.filter_by(status=status.value)
    if closure_id is not None:
        query = query.filter_by(closure_id=closure_id)

    total = query.count()

    jobs = query.order_by(JobRun.created_at.desc())\
        .offset((page - 1) * page_size)\
        .limit(page_size)\
        .all()

    total_pages = (total + page_size - 1) // page_size

    return JobListResponse(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        items=[JobListItem.model_validate(job) for job in jobs]
    )


@router.get('/{job_id}', response_model=JobStatusResponse)
async def get_job_status(job_id: str, db: Session = Depends(get_db)):
    """
    Get current status of a job.

    Returns the job status, the latest progress update (from Redis while the
    job runs, otherwise from the database), and the result or error.

    **Status Values:**
    - `pending`: Job is queued, waiting for worker
    - `processing`: Job is currently running
    - `success`: Job completed successfully
    - `failed`: Job failed with error
    - `cancelled`: Job was cancelled
    """
    job_run = _get_job(db, job_id)

    progress = None
    try:
        progress_data = redis_client.get(f'job_progress:{job_id}')
        if progress_data:
            progress = JobProgressResponse(**json.loads(progress_data))
    except redis.RedisError as e:
        logger.warning(f"Could not fetch progress from Redis for {job_id}: {e}")

    if not progress and job_run.progress:
        latest_progress = job_run.progress[-1]
        progress = JobProgressResponse(
            stage=latest_progress.stage,
            percent=float(latest_progress.percent),
            message=latest_progress.message or "",
            timestamp=latest_progress.timestamp
        )

    return JobStatusResponse(
        job_id=job_run.job_id,
        job_type=job_run.job_type,
        status=job_run.status,
        created_at=job_run.created_at,
        started_at=job_run.started_at,
        completed_at=job_run.completed_at,
        progress=progress,
        result=job_run.result,
        error=job_run.error,
        closure_id=job_run.closure_id,
        created_by=job_run.created_by
    )


@router.delete('/{job_id}', status_code=status.HTTP_204_NO_CONTENT)
async def cancel_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Cancel a pending or processing job.

    **Returns:**
    - 204 No Content if successfully cancelled
    - 404 if job not found
    - 400 if job cannot be cancelled (already completed)
    """
    job_run = _get_job(db, job_id)

    if job_run.status not in (JobStatus.PENDING.value, JobStatus.PROCESSING.value):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot cancel job with status '{job_run.status}'"
        )

    job_run.status = JobStatus.CANCELLED.value
    job_run.completed_at = datetime.utcnow()
    job_run.error = {
        'error': 'Job cancelled by user',
        'cancelled_by': current_user,
        'cancelled_at': datetime.utcnow().isoformat()
    }
    db.commit()

    try:
        from tasks.celery_app import celery_app
        celery_app.control.revoke(job_id, terminate=True)
        logger.info(f"Revoked Celery task {job_id}")
    except Exception as e:
        logger.warning(f"Could not revoke Celery task {job_id}: {e}")

    logger.info(f"Job {job_id} cancelled by {current_user}")

    return None
