from .base import ModelBackend
from .handle import ModelHandle, ModelState
from .registry import ModelRegistry, default_backends
from .schemas import EvalMetrics, GenerationOptions, TrainResult, TrainingExample, TrainingOptions

__all__ = [
    "ModelBackend",
    "ModelHandle",
    "ModelState",
    "ModelRegistry",
    "default_backends",
    "EvalMetrics",
    "GenerationOptions",
    "TrainResult",
    "TrainingExample",
    "TrainingOptions",
]
