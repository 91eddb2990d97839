"""Error taxonomy for the model lifecycle & dispatch layer.

Structural errors (registry not ready, unknown model, bad request shape) are raised
to the caller. Backend errors carry the model name and the underlying cause; during a
fan-out they are captured per model instead of being raised.
"""
from typing import Any, Dict, Optional


class ModelServiceError(Exception):
    """Base exception for all model service errors."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "error",
            "error": self.error_code,
            "message": str(self),
        }


class InitializationError(ModelServiceError):
    error_code = "INITIALIZATION_ERROR"


class NotInitializedError(ModelServiceError):
    status_code = 503
    error_code = "NOT_INITIALIZED"

    def __init__(self, detail: str = "model registry is not initialized, call initialize() first"):
        super().__init__(detail)


class ModelNotFoundError(ModelServiceError):
    status_code = 404
    error_code = "MODEL_NOT_FOUND"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"model '{name}' not found")


class NoModelsRegisteredError(ModelServiceError):
    status_code = 503
    error_code = "NO_MODELS_REGISTERED"

    def __init__(self):
        super().__init__("no models are registered")


class UnsupportedOperationError(ModelServiceError):
    status_code = 400
    error_code = "UNSUPPORTED_OPERATION"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"unsupported operation '{operation}'")


class InvalidTrainingDataError(ModelServiceError):
    status_code = 400
    error_code = "INVALID_TRAINING_DATA"


class BackendError(ModelServiceError):
    """A failure reported by one model backend."""

    error_code = "BACKEND_ERROR"

    def __init__(self, model_name: str, cause: Any):
        self.model_name = model_name
        self.cause = cause
        super().__init__(f"{model_name}: {cause}")

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["model"] = self.model_name
        return out


class LoadFailure(BackendError):
    error_code = "LOAD_FAILURE"


class UnloadFailure(BackendError):
    error_code = "UNLOAD_FAILURE"


class GenerationFailure(BackendError):
    error_code = "GENERATION_FAILURE"


class TrainingFailure(BackendError):
    error_code = "TRAINING_FAILURE"


class EvaluationFailure(BackendError):
    error_code = "EVALUATION_FAILURE"


class PersistenceFailure(BackendError):
    error_code = "PERSISTENCE_FAILURE"


class RateLimitExceeded(ModelServiceError):
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, key: str, retry_after: Optional[float] = None):
        self.key = key
        self.retry_after = retry_after
        super().__init__(f"too many requests from '{key}', try again later")
