from fastapi import FastAPI
from models.registry import ModelRegistry
from models.schemas import TrainingOptions
from services.dispatch_service import register as register_dispatch, router as dispatch_router
from services.training_service import register as register_training, router as training_router
from core.config import get_settings
from core.logging import setup_logging
import logging

setup_logging()
settings = get_settings()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)
app.include_router(dispatch_router, prefix="/api", tags=["models"])
app.include_router(training_router, prefix="/api/training", tags=["training"])


def build_registry() -> ModelRegistry:
    defaults = settings.get_training_defaults()
    registry = ModelRegistry(settings.get_model_configs(), training_defaults=TrainingOptions(**defaults.model_dump()))
    registry.initialize()
    return registry


@app.on_event("startup")
async def startup():
    registry = build_registry()
    dispatch = register_dispatch(app.state, registry, settings)
    register_training(app.state, dispatch, settings)

    if settings.RETRAIN_INTERVAL_MS:
        app.state.scheduler.schedule(settings.RETRAIN_SELECTOR, settings.RETRAIN_INTERVAL_MS)


@app.on_event("shutdown")
async def shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.shutdown()
    registry = getattr(app.state, "registry", None)
    if registry is not None:
        await registry.shutdown()
