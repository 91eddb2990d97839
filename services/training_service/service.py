import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from core.exceptions import InvalidTrainingDataError
from models.schemas import TrainingExample, TrainingOptions, prepare_examples, utc_timestamp
from services.dispatch_service.service import DispatchEngine, FanOutResult

logger = logging.getLogger(__name__)

SAMPLE_TRAINING_DATA = [
    {
        "input": "What is the capital of Indonesia?",
        "output": "The capital of Indonesia is Jakarta.",
        "metadata": {"category": "general knowledge", "difficulty": "easy", "tags": ["geography", "indonesia"]},
    },
    {
        "input": "Explain the binary search algorithm.",
        "output": "Binary search works on a sorted array. It compares the middle element with the target; "
                  "if they are equal the search ends, if the middle is larger it continues in the left half, "
                  "otherwise in the right half, until the value is found or the range is empty.",
        "metadata": {"category": "computer science", "difficulty": "medium", "tags": ["algorithms", "search"]},
    },
    {
        "input": "Write a simple Python program that computes a factorial.",
        "output": "```python\ndef factorial(n):\n    if n in (0, 1):\n        return 1\n    return n * factorial(n - 1)\n\n"
                  "n = int(input(\"Number: \"))\nprint(f\"{n}! = {factorial(n)}\")\n```",
        "metadata": {"category": "programming", "difficulty": "medium", "tags": ["python", "recursion"]},
    },
]


class TrainingService:
    """
    训练数据发现/合并、训练分发与 checkpoint 保存。

    selector 为 "all" 时走 fan-out（每个模型的失败记录在结果里），
    否则按模型名单发，错误直接抛给调用方。
    """

    def __init__(
            self,
            dispatch: DispatchEngine,
            data_dir: Union[str, Path],
            checkpoint_dir: Union[str, Path],
            file_extension: str = ".json",
            training_defaults: Optional[TrainingOptions] = None,
    ):
        self.dispatch = dispatch
        self.data_dir = Path(data_dir)
        self.checkpoint_dir = Path(checkpoint_dir)
        self.file_extension = file_extension
        self.training_defaults = training_defaults
        self._ensure_directories()

    @classmethod
    def from_settings(cls, dispatch: DispatchEngine, settings) -> "TrainingService":
        defaults = settings.get_training_defaults()
        return cls(
            dispatch,
            data_dir=settings.TRAINING_DATA_DIR,
            checkpoint_dir=settings.TRAINING_CHECKPOINT_DIR,
            file_extension=settings.TRAINING_FILE_EXTENSION,
            training_defaults=TrainingOptions(**defaults.model_dump()),
        )

    def _ensure_directories(self) -> None:
        for directory in (self.data_dir, self.checkpoint_dir):
            if not directory.exists():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info("Created directory %s", directory)

    # ---------------- data ----------------
    def find_training_data_files(self) -> List[Path]:
        if not self.data_dir.is_dir():
            return []
        files = sorted(p for p in self.data_dir.iterdir() if p.is_file() and p.name.endswith(self.file_extension))
        logger.info("Found %d training data files in %s", len(files), self.data_dir)
        return files

    def load_training_data(self, path: Union[str, Path]) -> List[Dict[str, Any]]:
        path = Path(path)
        if not path.is_file():
            raise InvalidTrainingDataError(f"training data file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise InvalidTrainingDataError(f"cannot read training data {path}: {e}") from e
        if not isinstance(data, list):
            raise InvalidTrainingDataError(f"training data {path} must be a JSON array")
        prepare_examples(data, source=str(path))
        logger.info("Loaded %d samples from %s", len(data), path)
        return data

    def merge_training_data(self, files: Iterable[Union[str, Path]]) -> List[Dict[str, Any]]:
        merged: List[Dict[str, Any]] = []
        for f in files:
            merged.extend(self.load_training_data(f))
        logger.info("Merged training data: %d samples", len(merged))
        return merged

    def create_sample_training_file(self, path: Union[str, Path, None] = None) -> Path:
        target = Path(path) if path else self.data_dir / f"sample_data_{int(time.time() * 1000)}{self.file_extension}"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(SAMPLE_TRAINING_DATA, ensure_ascii=False), encoding="utf-8")
        logger.info("Sample training file written to %s", target)
        return target

    # ---------------- training ----------------
    async def train(
            self,
            selector: str,
            examples: Iterable[Union[TrainingExample, Dict[str, Any]]],
            options: Union[TrainingOptions, Dict[str, Any], None] = None,
    ) -> Union[FanOutResult, Any]:
        examples = prepare_examples(examples)
        if not examples:
            raise InvalidTrainingDataError("no training examples")
        if options is None:
            options = self.training_defaults
        logger.info("Training %s on %d samples", selector, len(examples))
        return await self.dispatch.dispatch(selector, "train", examples, options)

    async def save_checkpoint(self, selector: str) -> Union[FanOutResult, str]:
        return await self.dispatch.dispatch(selector, "checkpoint", self.checkpoint_dir)

    async def run_retraining(self, selector: str = "all") -> Optional[Dict[str, Any]]:
        """一次完整的重训练。没有训练数据文件时跳过并返回 None。"""
        files = await asyncio.to_thread(self.find_training_data_files)
        if not files:
            logger.warning("No training data files found in %s, skipping retraining", self.data_dir)
            return None
        examples = await asyncio.to_thread(self.merge_training_data, files)
        training = await self.train(selector, examples)
        checkpoints = await self.save_checkpoint(selector)
        logger.info("Retraining of %s finished", selector)
        return {
            "status": "success",
            "selector": selector,
            "files": [str(f) for f in files],
            "examples": len(examples),
            "training": dump_result(training),
            "checkpoints": dump_result(checkpoints),
            "timestamp": utc_timestamp(),
        }


def dump_result(value: Any) -> Any:
    if isinstance(value, FanOutResult):
        return value.to_dict()
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True)
    return value
