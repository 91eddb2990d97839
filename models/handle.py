"""
ModelHandle：包装一个 backend 实例，负责它的加载状态。

同一个 handle 上的 load / unload 通过 _transition_lock 串行执行；
generate / train / evaluate / save 只要求状态为 LOADED（未加载时先隐式 load），
彼此之间不加锁，backend 自身是否可重入由 backend 决定。
"""
import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from core.config import ModelConfig
from core.exceptions import (
    EvaluationFailure,
    GenerationFailure,
    LoadFailure,
    PersistenceFailure,
    TrainingFailure,
    UnloadFailure,
)
from .base import ModelBackend
from .schemas import (
    EvalMetrics,
    GenerationOptions,
    TrainResult,
    TrainingExample,
    TrainingOptions,
    merge_options,
    prepare_examples,
    utc_timestamp,
)

logger = logging.getLogger(__name__)


class ModelState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    UNLOADING = "unloading"
    FAILED = "failed"


class ModelHandle:
    def __init__(
            self,
            name: str,
            config: ModelConfig,
            backend: ModelBackend,
            training_defaults: Optional[TrainingOptions] = None,
    ):
        self.name = name
        self.config = config
        self._backend = backend
        self._state = ModelState.UNLOADED
        self._transition_lock = asyncio.Lock()
        self.training_defaults = training_defaults or TrainingOptions(epochs=1, batch_size=8, learning_rate=5e-5)

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._state is ModelState.LOADED

    # ---------------- lifecycle ----------------
    async def load(self) -> None:
        async with self._transition_lock:
            if self._state is ModelState.LOADED:
                return
            logger.info("Loading model %s from %s", self.name, self.config.path)
            self._state = ModelState.LOADING
            try:
                await self._backend.load()
            except Exception as e:
                self._state = ModelState.FAILED
                logger.error("Failed to load model %s: %s", self.name, e)
                raise LoadFailure(self.name, e) from e
            except BaseException:
                # 被取消（如 wait_for 超时）时 backend 状态未知
                self._state = ModelState.FAILED
                logger.warning("Loading model %s was cancelled", self.name)
                raise
            self._state = ModelState.LOADED
            logger.info("Model %s loaded", self.name)

    async def unload(self) -> None:
        async with self._transition_lock:
            if self._state is ModelState.UNLOADED:
                return
            logger.info("Unloading model %s", self.name)
            self._state = ModelState.UNLOADING
            try:
                await self._backend.unload()
            except Exception as e:
                self._state = ModelState.FAILED
                logger.error("Failed to unload model %s: %s", self.name, e)
                raise UnloadFailure(self.name, e) from e
            except BaseException:
                self._state = ModelState.FAILED
                logger.warning("Unloading model %s was cancelled", self.name)
                raise
            self._state = ModelState.UNLOADED
            logger.info("Model %s unloaded", self.name)

    async def _ensure_loaded(self) -> None:
        if self._state is not ModelState.LOADED:
            await self.load()

    # ---------------- capabilities ----------------
    async def generate(self, prompt: str, options: Union[GenerationOptions, Dict[str, Any], None] = None) -> str:
        await self._ensure_loaded()
        merged = merge_options(self._backend.default_options, options)
        logger.debug("Generating with %s, prompt=%.50s...", self.name, prompt)
        try:
            return await self._backend.generate(prompt, merged)
        except Exception as e:
            logger.error("Generation failed for %s: %s", self.name, e)
            raise GenerationFailure(self.name, e) from e

    async def train(
            self,
            examples: Iterable[Union[TrainingExample, Dict[str, Any]]],
            options: Union[TrainingOptions, Dict[str, Any], None] = None,
    ) -> TrainResult:
        examples = prepare_examples(examples)
        if not examples:
            raise TrainingFailure(self.name, "training data must not be empty")
        await self._ensure_loaded()
        merged = merge_options(self.training_defaults, options)
        logger.info("Training %s on %d examples (epochs=%s)", self.name, len(examples), merged.epochs)
        try:
            result = await self._backend.train(examples, merged)
        except Exception as e:
            logger.error("Training failed for %s: %s", self.name, e)
            raise TrainingFailure(self.name, e) from e
        logger.info("Training %s finished, loss=%s", self.name, result.loss)
        return result

    async def evaluate(self, examples: Iterable[Union[TrainingExample, Dict[str, Any]]]) -> EvalMetrics:
        examples = prepare_examples(examples)
        await self._ensure_loaded()
        try:
            metrics = await self._backend.evaluate(examples)
        except Exception as e:
            logger.error("Evaluation failed for %s: %s", self.name, e)
            raise EvaluationFailure(self.name, e) from e
        logger.info("Evaluation of %s finished, perplexity=%s", self.name, metrics.perplexity)
        return metrics

    async def save(self, path: Union[str, Path, None] = None) -> str:
        await self._ensure_loaded()
        target = Path(path) if path else Path(self.config.path) / "checkpoint"
        logger.info("Saving model %s to %s", self.name, target)
        try:
            saved = await self._backend.save(target)
        except Exception as e:
            logger.error("Saving %s failed: %s", self.name, e)
            raise PersistenceFailure(self.name, e) from e
        return str(saved)

    async def checkpoint(self, directory: Union[str, Path]) -> str:
        stamp = utc_timestamp().replace(":", "-")
        return await self.save(Path(directory) / f"{self.name}_{stamp}")

    def info(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.config.path,
            "backend": self.config.backend,
            "state": self._state.value,
        }

    def __repr__(self) -> str:
        return f"ModelHandle(name={self.name}, backend={self.config.backend}, state={self._state.value})"
