import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np

from core.config import ModelConfig
from .base import ModelBackend, require_path, write_checkpoint_meta
from .metrics import perplexity, score_generations
from .sampling import log_softmax, sample_next_token
from .schemas import EvalMetrics, GenerationOptions, TrainResult, TrainingExample, TrainingOptions

logger = logging.getLogger(__name__)


class GptjBackend(ModelBackend):
    """
    GPT-J exported to ONNX, served by an onnxruntime InferenceSession.

    The model directory must hold ``model.onnx`` and ``tokenizer.json``. Decoding
    re-runs the full window each step (no KV cache), so long outputs are slow.
    """

    family = "onnx"
    model_type = "GPT-J"
    version = "6B"

    def __init__(self, config: ModelConfig):
        self.config = config
        self._session = None
        self._tokenizer = None
        self._eos_id: Optional[int] = None
        self._input_names: Tuple[str, ...] = ()

    async def load(self) -> None:
        model_dir = require_path(self.config.path)
        model_file = require_path(model_dir / self.config.options.get("model_file", "model.onnx"))
        tokenizer_file = require_path(model_dir / "tokenizer.json")
        import onnxruntime as ort  # type: ignore
        from tokenizers import Tokenizer  # type: ignore

        sess_options = ort.SessionOptions()
        sess_options.intra_op_num_threads = self.config.threads
        sess_options.log_severity_level = 3
        self._session = await asyncio.to_thread(
            ort.InferenceSession,
            str(model_file),
            sess_options=sess_options,
            providers=["CPUExecutionProvider"],
        )
        self._input_names = tuple(i.name for i in self._session.get_inputs())
        self._tokenizer = Tokenizer.from_file(str(tokenizer_file))
        self._eos_id = self.config.options.get("eos_token_id", self._tokenizer.token_to_id("<|endoftext|>"))
        logger.info("GPT-J session ready, inputs=%s eos=%s", self._input_names, self._eos_id)

    def _logits(self, ids: List[int]) -> np.ndarray:
        """Return logits of shape (seq, vocab) for one sequence."""
        input_ids = np.asarray([ids], dtype=np.int64)
        feeds = {}
        for name in self._input_names:
            if name == "input_ids":
                feeds[name] = input_ids
            elif name == "attention_mask":
                feeds[name] = np.ones_like(input_ids)
            elif name == "position_ids":
                feeds[name] = np.arange(input_ids.shape[1], dtype=np.int64)[None, :]
        return self._session.run(None, feeds)[0][0]

    def _generate_sync(self, prompt: str, options: GenerationOptions) -> str:
        ids = self._tokenizer.encode(prompt).ids
        rng = np.random.default_rng()
        generated: List[int] = []
        for _ in range(options.max_tokens or 0):
            window = (ids + generated)[-self.config.context_size:]
            logits = self._logits(window)[-1]
            next_id = sample_next_token(logits, window, options, rng)
            if next_id == self._eos_id:
                break
            generated.append(next_id)
        return self._tokenizer.decode(generated)

    def _perplexity(self, examples: List[TrainingExample]) -> Optional[float]:
        total_nll, total_tokens = 0.0, 0
        for ex in examples:
            prompt_ids = self._tokenizer.encode(ex.input).ids
            target_ids = self._tokenizer.encode(ex.output).ids
            ids = (prompt_ids + target_ids)[-self.config.context_size:]
            n_target = min(len(target_ids), len(ids) - 1)
            if n_target <= 0:
                continue
            logprobs = log_softmax(self._logits(ids).astype(np.float64))
            # 位置 t 的 logits 预测 t+1 的 token
            positions = np.arange(len(ids) - 1 - n_target, len(ids) - 1)
            total_nll -= float(logprobs[positions, np.asarray(ids)[positions + 1]].sum())
            total_tokens += n_target
        return perplexity(total_nll, total_tokens)

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        return await asyncio.to_thread(self._generate_sync, prompt, options)

    async def train(self, examples: List[TrainingExample], options: TrainingOptions) -> TrainResult:
        raise NotImplementedError("ONNX inference sessions cannot be fine-tuned in place")

    async def evaluate(self, examples: List[TrainingExample]) -> EvalMetrics:
        ppl = await asyncio.to_thread(self._perplexity, examples)
        greedy = self.default_options.model_copy(update={"temperature": 0.0})
        accuracy, f1 = await score_generations(self.generate, examples, greedy)
        return EvalMetrics(perplexity=ppl, accuracy=accuracy, f1_score=f1)

    async def save(self, path: Path) -> Path:
        return await asyncio.to_thread(write_checkpoint_meta, path, self.model_type, self.version, self.config)

    async def unload(self) -> None:
        self._session = None
        self._tokenizer = None
