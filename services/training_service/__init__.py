from .api import router
from .scheduler import RetrainingScheduler, ScheduledJob
from .service import TrainingService

__all__ = ["router", "RetrainingScheduler", "ScheduledJob", "TrainingService", "register"]


def register(state, dispatch, settings):
    state.training_service = TrainingService.from_settings(dispatch, settings)
    state.scheduler = RetrainingScheduler(state.training_service)
    return state.training_service
