import logging
import math
import time
from fastapi import APIRouter, Depends, HTTPException, Request

from core.exceptions import ModelServiceError, RateLimitExceeded
from models.registry import ModelRegistry
from models.schemas import utc_timestamp
from utils.rate_limiter import SlidingWindowRateLimiter
from .schemas import ApiResponse, GenerateRequest, StatusResponse
from .service import DispatchEngine, FanOutResult

router = APIRouter()
logger = logging.getLogger(__name__)


def get_registry(request: Request) -> ModelRegistry:
    return request.app.state.registry


def get_dispatch(request: Request) -> DispatchEngine:
    return request.app.state.dispatch


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.rate_limiter


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def rate_limit(request: Request, limiter: SlidingWindowRateLimiter = Depends(get_rate_limiter)) -> None:
    key = client_key(request)
    try:
        limiter.enforce(key)
    except RateLimitExceeded as e:
        logger.warning("rate limit exceeded: client=%s path=%s", key, request.url.path)
        headers = {"Retry-After": str(math.ceil(e.retry_after))} if e.retry_after else None
        raise HTTPException(status_code=e.status_code, detail=e.to_dict(), headers=headers)


def _ensure_initialized(registry: ModelRegistry) -> None:
    if not registry.initialized:
        registry.initialize()


async def _run(route: str, model: str, call):
    """执行 dispatch 调用，统一记录耗时并把领域错误映射为 HTTP 错误。"""
    start_pc = time.perf_counter()
    try:
        res = await call()
    except ModelServiceError as e:
        elapsed_ms = (time.perf_counter() - start_pc) * 1000
        if e.status_code >= 500:
            logger.error("%s failed: model=%s error=%s elapsed_ms=%.2fms", route, model, e, elapsed_ms)
        else:
            logger.warning("%s rejected: model=%s error=%s elapsed_ms=%.2fms", route, model, e, elapsed_ms)
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())
    except Exception as e:
        elapsed_ms = (time.perf_counter() - start_pc) * 1000
        logger.exception("%s unexpected error: model=%s elapsed_ms=%.2fms", route, model, elapsed_ms)
        raise HTTPException(status_code=500, detail={"status": "error", "error": "INTERNAL_ERROR",
                                                     "message": f"内部错误: {e}"})

    elapsed_ms = (time.perf_counter() - start_pc) * 1000
    logger.info("%s success: model=%s elapsed_ms=%.2fms", route, model, elapsed_ms)
    return res


@router.get("/status", response_model=StatusResponse)
def status(registry: ModelRegistry = Depends(get_registry)):
    return StatusResponse(message="model service is running", initialized=registry.initialized,
                          timestamp=utc_timestamp())


@router.get("/models", response_model=ApiResponse)
async def list_models(registry: ModelRegistry = Depends(get_registry)):
    async def call():
        _ensure_initialized(registry)
        return registry.get_info()

    return ApiResponse(data=await _run("models", "all", call))


@router.post("/generate/{model}", response_model=ApiResponse, dependencies=[Depends(rate_limit)])
async def generate(model: str, payload: GenerateRequest,
                   registry: ModelRegistry = Depends(get_registry),
                   dispatch: DispatchEngine = Depends(get_dispatch)):
    logger.info("Received /generate/%s request: prompt=%.50s", model, payload.prompt)

    async def call():
        _ensure_initialized(registry)
        result = await dispatch.dispatch(model, "generate", payload.prompt, payload.options)
        if isinstance(result, FanOutResult):
            return result.to_dict()
        return {
            "model": model,
            "prompt": payload.prompt,
            "generated_text": result,
            "timestamp": utc_timestamp(),
        }

    return ApiResponse(data=await _run("generate", model, call))


async def _lifecycle(op: str, model: str, registry: ModelRegistry, dispatch: DispatchEngine):
    async def call():
        _ensure_initialized(registry)
        result = await dispatch.dispatch(model, op)
        if isinstance(result, FanOutResult):
            return result.to_dict()
        return {
            "model": model,
            "status": "success",
            "state": registry.get_handle(model).state.value,
            "timestamp": utc_timestamp(),
        }

    return ApiResponse(data=await _run(op, model, call))


@router.post("/models/{model}/load", response_model=ApiResponse)
async def load_model(model: str, registry: ModelRegistry = Depends(get_registry),
                     dispatch: DispatchEngine = Depends(get_dispatch)):
    return await _lifecycle("load", model, registry, dispatch)


@router.post("/models/{model}/unload", response_model=ApiResponse)
async def unload_model(model: str, registry: ModelRegistry = Depends(get_registry),
                       dispatch: DispatchEngine = Depends(get_dispatch)):
    return await _lifecycle("unload", model, registry, dispatch)
