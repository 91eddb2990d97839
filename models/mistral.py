import asyncio
import logging
import math
from pathlib import Path
from typing import List, Optional

from core.config import ModelConfig
from .base import ModelBackend, require_path, write_checkpoint_meta
from .metrics import score_generations
from .schemas import EvalMetrics, GenerationOptions, TrainResult, TrainingExample, TrainingOptions

logger = logging.getLogger(__name__)


def _join(example: TrainingExample) -> str:
    return f"{example.input}\n{example.output}"


class MistralBackend(ModelBackend):
    """
    Mistral 7B through a Hugging Face text-generation pipeline.
    训练是标准的 causal-LM 微调：AdamW，按 batch_size 切分 mini-batch，逐 epoch 统计平均 loss 与 next-token 准确率。
    """

    family = "hf_pipeline"
    model_type = "Mistral"
    version = "7B"

    def __init__(self, config: ModelConfig):
        self.config = config
        self.device = None
        self._pipeline = None

    async def load(self) -> None:
        path = require_path(self.config.path)
        import torch
        from transformers import pipeline  # type: ignore

        self.device = 'cuda' if torch.cuda.is_available() else 'cpu'
        torch.set_num_threads(self.config.threads)
        self._pipeline = await asyncio.to_thread(
            pipeline,
            "text-generation",
            model=str(path),
            device=self.device,
            revision=self.config.options.get("revision", "main"),
        )
        tokenizer = self._pipeline.tokenizer
        if tokenizer.pad_token is None:
            tokenizer.pad_token = tokenizer.eos_token

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        kwargs = {
            "max_new_tokens": options.max_tokens,
            "repetition_penalty": options.repetition_penalty,
            "return_full_text": False,
        }
        if options.temperature is not None and options.temperature <= 0:
            kwargs["do_sample"] = False
        else:
            kwargs.update(do_sample=True, temperature=options.temperature, top_p=options.top_p, top_k=options.top_k)
        result = await asyncio.to_thread(self._pipeline, prompt, **kwargs)
        return result[0]["generated_text"]

    # ---------------- training / evaluation ----------------
    def _batches(self, examples: List[TrainingExample], batch_size: int):
        tokenizer = self._pipeline.tokenizer
        texts = [_join(ex) for ex in examples]
        batch_size = max(batch_size, 1)
        for start in range(0, len(texts), batch_size):
            batch = tokenizer(
                texts[start:start + batch_size],
                return_tensors="pt",
                padding=True,
                truncation=True,
                max_length=self.config.context_size,
            ).to(self._pipeline.model.device)
            labels = batch["input_ids"].clone()
            labels[batch["attention_mask"] == 0] = -100
            yield batch, labels

    def _fine_tune(self, examples: List[TrainingExample], options: TrainingOptions) -> TrainResult:
        import torch

        model = self._pipeline.model
        optimizer = torch.optim.AdamW(model.parameters(), lr=options.learning_rate)
        epoch_loss = 0.0
        accuracy = 0.0
        model.train()
        try:
            for epoch in range(options.epochs):
                total_loss, steps, correct, counted = 0.0, 0, 0, 0
                for batch, labels in self._batches(examples, options.batch_size):
                    out = model(**batch, labels=labels)
                    out.loss.backward()
                    optimizer.step()
                    optimizer.zero_grad()
                    total_loss += out.loss.item()
                    steps += 1
                    with torch.no_grad():
                        preds = out.logits[:, :-1].argmax(dim=-1)
                        target = labels[:, 1:]
                        mask = target != -100
                        correct += (preds[mask] == target[mask]).sum().item()
                        counted += mask.sum().item()
                epoch_loss = total_loss / max(steps, 1)
                accuracy = correct / max(counted, 1)
                logger.info("Mistral epoch %d/%d loss=%.4f acc=%.4f", epoch + 1, options.epochs, epoch_loss, accuracy)
        finally:
            model.eval()
        return TrainResult(status="success", epochs=options.epochs, loss=epoch_loss, accuracy=accuracy)

    def _perplexity(self, examples: List[TrainingExample]) -> Optional[float]:
        import torch

        model = self._pipeline.model
        total_nll, total_tokens = 0.0, 0
        with torch.no_grad():
            for batch, labels in self._batches(examples, 1):
                n_tokens = int((labels[:, 1:] != -100).sum().item())
                if n_tokens == 0:
                    continue
                out = model(**batch, labels=labels)
                total_nll += out.loss.item() * n_tokens
                total_tokens += n_tokens
        return math.exp(total_nll / total_tokens) if total_tokens else None

    async def train(self, examples: List[TrainingExample], options: TrainingOptions) -> TrainResult:
        logger.warning("Fine-tuning Mistral needs significant compute (device=%s)", self.device)
        return await asyncio.to_thread(self._fine_tune, examples, options)

    async def evaluate(self, examples: List[TrainingExample]) -> EvalMetrics:
        ppl = await asyncio.to_thread(self._perplexity, examples) if examples else None
        greedy = self.default_options.model_copy(update={"temperature": 0.0})
        accuracy, f1 = await score_generations(self.generate, examples, greedy)
        return EvalMetrics(perplexity=ppl, accuracy=accuracy, f1_score=f1)

    async def save(self, path: Path) -> Path:
        await asyncio.to_thread(self._pipeline.save_pretrained, str(path))
        return await asyncio.to_thread(write_checkpoint_meta, path, self.model_type, self.version, self.config)

    async def unload(self) -> None:
        self._pipeline = None
        if self.device == 'cuda':
            import torch
            torch.cuda.empty_cache()
