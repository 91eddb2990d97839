import asyncio
import logging
from pathlib import Path
from typing import List

from core.config import ModelConfig
from .base import ModelBackend, require_path, write_checkpoint_meta
from .metrics import score_generations
from .schemas import EvalMetrics, GenerationOptions, TrainResult, TrainingExample, TrainingOptions

logger = logging.getLogger(__name__)


class LlamaBackend(ModelBackend):
    """LLaMA 2 from local GGUF weights through llama.cpp."""

    family = "llama_cpp"
    model_type = "LLaMA"
    version = "2"

    def __init__(self, config: ModelConfig):
        self.config = config
        self._llm = None

    async def load(self) -> None:
        path = require_path(self.config.path)
        from llama_cpp import Llama  # type: ignore

        gpu_layers = int(self.config.options.get("gpu_layers", 0))
        logger.info("Creating llama.cpp context: n_ctx=%s n_batch=%s n_threads=%s n_gpu_layers=%s",
                    self.config.context_size, self.config.batch_size, self.config.threads, gpu_layers)
        self._llm = await asyncio.to_thread(
            Llama,
            model_path=str(path),
            n_ctx=self.config.context_size,
            n_batch=self.config.batch_size,
            n_threads=self.config.threads,
            n_gpu_layers=gpu_layers,
            verbose=False,
        )

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        out = await asyncio.to_thread(
            self._llm,
            prompt,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            top_p=options.top_p,
            top_k=options.top_k,
            repeat_penalty=options.repetition_penalty,
        )
        return out["choices"][0]["text"]

    async def train(self, examples: List[TrainingExample], options: TrainingOptions) -> TrainResult:
        # GGUF 权重在 llama.cpp 中只读，微调需要在原始权重上完成后重新转换
        raise NotImplementedError("llama.cpp runtime is inference-only; fine-tune the source weights and reconvert")

    async def evaluate(self, examples: List[TrainingExample]) -> EvalMetrics:
        greedy = self.default_options.model_copy(update={"temperature": 0.0})
        accuracy, f1 = await score_generations(self.generate, examples, greedy)
        return EvalMetrics(perplexity=None, accuracy=accuracy, f1_score=f1)

    async def save(self, path: Path) -> Path:
        return await asyncio.to_thread(write_checkpoint_meta, path, self.model_type, self.version, self.config)

    async def unload(self) -> None:
        llm, self._llm = self._llm, None
        close = getattr(llm, "close", None)
        if close is not None:
            await asyncio.to_thread(close)
