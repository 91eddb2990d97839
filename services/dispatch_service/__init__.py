from .api import router
from .service import DispatchEngine, FanOutResult, Outcome
from utils.rate_limiter import SlidingWindowRateLimiter

__all__ = ["router", "DispatchEngine", "FanOutResult", "Outcome", "register"]


def register(state, registry, settings, rate_limiter=None):
    """把 dispatch 相关的协作对象挂到 app.state 上。"""
    state.registry = registry
    state.dispatch = DispatchEngine(registry)
    state.rate_limiter = rate_limiter or SlidingWindowRateLimiter.from_settings(settings)
    return state.dispatch
