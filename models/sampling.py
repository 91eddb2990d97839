from typing import Optional, Sequence

import numpy as np

from .schemas import GenerationOptions


def log_softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    return shifted - np.log(np.sum(np.exp(shifted), axis=-1, keepdims=True))


def apply_repetition_penalty(logits: np.ndarray, history: Sequence[int], penalty: Optional[float]) -> np.ndarray:
    # CTRL 风格：已出现过的 token，正 logit 除以 penalty，负 logit 乘以 penalty
    if not penalty or penalty == 1.0 or not len(history):
        return logits
    logits = logits.copy()
    seen = np.unique(np.asarray(history, dtype=np.int64))
    seen = seen[seen < logits.shape[-1]]
    vals = logits[seen]
    logits[seen] = np.where(vals > 0, vals / penalty, vals * penalty)
    return logits


def sample_next_token(
        logits: np.ndarray,
        history: Sequence[int],
        options: GenerationOptions,
        rng: np.random.Generator,
) -> int:
    """Pick the next token id from a 1-D logits vector."""
    logits = apply_repetition_penalty(logits.astype(np.float64), history, options.repetition_penalty)

    temperature = options.temperature
    if temperature is None or temperature <= 0:
        return int(np.argmax(logits))
    logits = logits / temperature

    top_k = options.top_k
    if top_k and 0 < top_k < logits.shape[-1]:
        kth = np.partition(logits, -top_k)[-top_k]
        logits = np.where(logits < kth, -np.inf, logits)

    probs = np.exp(log_softmax(logits))

    top_p = options.top_p
    if top_p is not None and 0 < top_p < 1.0:
        order = np.argsort(-probs)
        cumulative = np.cumsum(probs[order])
        # 至少保留概率最高的一个 token
        cutoff = int(np.searchsorted(cumulative, top_p)) + 1
        keep = order[:cutoff]
        mask = np.zeros_like(probs, dtype=bool)
        mask[keep] = True
        probs = np.where(mask, probs, 0.0)

    probs = probs / probs.sum()
    return int(rng.choice(probs.shape[-1], p=probs))
