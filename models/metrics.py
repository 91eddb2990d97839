import math
import re
import string
from collections import Counter
from typing import Awaitable, Callable, List, Optional, Tuple

from .schemas import GenerationOptions, TrainingExample

_ARTICLES = re.compile(r"\b(a|an|the)\b")


def normalize_text(text: str) -> str:
    text = text.lower()
    text = "".join(ch for ch in text if ch not in string.punctuation)
    text = _ARTICLES.sub(" ", text)
    return " ".join(text.split())


def exact_match(prediction: str, reference: str) -> float:
    return float(normalize_text(prediction) == normalize_text(reference))


def token_f1(prediction: str, reference: str) -> float:
    pred_tokens = normalize_text(prediction).split()
    ref_tokens = normalize_text(reference).split()
    if not pred_tokens or not ref_tokens:
        return float(pred_tokens == ref_tokens)
    common = Counter(pred_tokens) & Counter(ref_tokens)
    overlap = sum(common.values())
    if overlap == 0:
        return 0.0
    precision = overlap / len(pred_tokens)
    recall = overlap / len(ref_tokens)
    return 2 * precision * recall / (precision + recall)


async def score_generations(
        generate: Callable[[str, GenerationOptions], Awaitable[str]],
        examples: List[TrainingExample],
        options: GenerationOptions,
) -> Tuple[Optional[float], Optional[float]]:
    """
    Generate for every example input and compare with its expected output.
    Returns (exact-match accuracy, mean token F1); both None for an empty set.
    """
    if not examples:
        return None, None
    em_total = 0.0
    f1_total = 0.0
    for ex in examples:
        prediction = await generate(ex.input, options)
        em_total += exact_match(prediction, ex.output)
        f1_total += token_f1(prediction, ex.output)
    return em_total / len(examples), f1_total / len(examples)


def perplexity(total_nll: float, n_tokens: int) -> Optional[float]:
    if n_tokens <= 0:
        return None
    return math.exp(total_nll / n_tokens)
