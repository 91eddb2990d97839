import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Union

from core.config import ModelConfig
from .schemas import EvalMetrics, GenerationOptions, TrainResult, TrainingExample, TrainingOptions, utc_timestamp


class ModelBackend(ABC):
    """
    Capability contract every backend family implements.

    A backend owns its runtime objects (session, pipeline, llama context) and nothing
    else; load state and locking live in ModelHandle. Methods are called with options
    already merged over ``default_options``.
    """

    family: str = ""
    model_type: str = ""
    version: str = ""
    default_options = GenerationOptions(
        temperature=0.7,
        max_tokens=512,
        top_p=0.95,
        top_k=40,
        repetition_penalty=1.1,
    )

    @abstractmethod
    async def load(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        raise NotImplementedError

    @abstractmethod
    async def train(self, examples: List[TrainingExample], options: TrainingOptions) -> TrainResult:
        raise NotImplementedError

    @abstractmethod
    async def evaluate(self, examples: List[TrainingExample]) -> EvalMetrics:
        raise NotImplementedError

    @abstractmethod
    async def save(self, path: Path) -> Path:
        raise NotImplementedError

    @abstractmethod
    async def unload(self) -> None:
        raise NotImplementedError


def require_path(path: Union[str, Path]) -> Path:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"model path not found: {path}")
    return path


def write_checkpoint_meta(target: Union[str, Path], model_type: str, version: str, config: ModelConfig) -> Path:
    """Write ``{target}.meta.json`` and return the resolved target path."""
    target = Path(target).resolve()
    target.parent.mkdir(parents=True, exist_ok=True)
    meta = {
        "type": model_type,
        "version": version,
        "timestamp": utc_timestamp(),
        "config": config.model_dump(),
    }
    meta_path = target.with_name(target.name + ".meta.json")
    meta_path.write_text(json.dumps(meta, ensure_ascii=False, indent=2), encoding="utf-8")
    return target
