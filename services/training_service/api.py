import logging
import time
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request

from core.exceptions import ModelServiceError
from models.schemas import utc_timestamp
from services.dispatch_service.schemas import ApiResponse
from .scheduler import RetrainingScheduler
from .schemas import ScheduleRequest, ScheduledJobResponse, TrainingRunRequest
from .service import TrainingService, dump_result

router = APIRouter()
logger = logging.getLogger(__name__)


def get_training_service(request: Request) -> TrainingService:
    return request.app.state.training_service


def get_scheduler(request: Request) -> RetrainingScheduler:
    return request.app.state.scheduler


def _http_error(e: ModelServiceError, route: str, elapsed_ms: float) -> HTTPException:
    if e.status_code >= 500:
        logger.error("%s failed: %s; elapsed_ms=%.2fms", route, e, elapsed_ms)
    else:
        logger.warning("%s rejected: %s; elapsed_ms=%.2fms", route, e, elapsed_ms)
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


@router.post("/run", response_model=ApiResponse)
async def run_training(payload: TrainingRunRequest, svc: TrainingService = Depends(get_training_service)):
    logger.info("Received /training/run request: model=%s examples=%s",
                payload.model, None if payload.examples is None else len(payload.examples))
    start_pc = time.perf_counter()
    try:
        if payload.examples is None:
            res = await svc.run_retraining(payload.model)
            if res is None:
                res = {"status": "skipped", "selector": payload.model,
                       "message": "no training data files found", "timestamp": utc_timestamp()}
        else:
            res = dump_result(await svc.train(payload.model, payload.examples, payload.options))
    except ModelServiceError as e:
        raise _http_error(e, "training/run", (time.perf_counter() - start_pc) * 1000)
    except Exception as e:
        elapsed_ms = (time.perf_counter() - start_pc) * 1000
        logger.exception("training/run unexpected error: %s; elapsed_ms=%.2fms", e, elapsed_ms)
        raise HTTPException(status_code=500, detail=f"内部错误: {e}")

    elapsed_ms = (time.perf_counter() - start_pc) * 1000
    logger.info("training/run success: model=%s elapsed_ms=%.2fms", payload.model, elapsed_ms)
    return ApiResponse(data=res)


@router.post("/checkpoint/{model}", response_model=ApiResponse)
async def save_checkpoint(model: str, svc: TrainingService = Depends(get_training_service)):
    start_pc = time.perf_counter()
    try:
        res = dump_result(await svc.save_checkpoint(model))
    except ModelServiceError as e:
        raise _http_error(e, "training/checkpoint", (time.perf_counter() - start_pc) * 1000)
    if isinstance(res, str):
        res = {"model": model, "path": res, "timestamp": utc_timestamp()}
    logger.info("training/checkpoint success: model=%s elapsed_ms=%.2fms",
                model, (time.perf_counter() - start_pc) * 1000)
    return ApiResponse(data=res)


@router.post("/schedule", response_model=ScheduledJobResponse, status_code=201)
async def create_schedule(payload: ScheduleRequest, scheduler: RetrainingScheduler = Depends(get_scheduler)):
    job = scheduler.schedule(payload.model, payload.interval_ms)
    return ScheduledJobResponse(**job.to_dict())


@router.get("/schedule", response_model=List[ScheduledJobResponse])
async def list_schedules(scheduler: RetrainingScheduler = Depends(get_scheduler)):
    return [ScheduledJobResponse(**job.to_dict()) for job in scheduler.list_jobs()]


@router.delete("/schedule/{job_id}", response_model=ApiResponse)
async def cancel_schedule(job_id: str, scheduler: RetrainingScheduler = Depends(get_scheduler)):
    if not scheduler.cancel(job_id):
        raise HTTPException(status_code=404, detail=f"job '{job_id}' not found")
    return ApiResponse(data={"job_id": job_id, "cancelled": True, "timestamp": utc_timestamp()})
