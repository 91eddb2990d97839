# models/schemas.py
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, TypeVar, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from core.exceptions import InvalidTrainingDataError

OptionsT = TypeVar("OptionsT", bound=BaseModel)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationOptions(CamelModel):
    """生成参数。未设置的字段由各 backend 的默认值补齐，不做范围校验。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    temperature: Optional[float] = Field(None, description="采样随机度")
    max_tokens: Optional[int] = Field(None, description="输出 token 上限")
    top_p: Optional[float] = Field(None, description="nucleus 截断")
    top_k: Optional[int] = Field(None, description="top-k 截断")
    repetition_penalty: Optional[float] = Field(None, description="重复惩罚")


class TrainingOptions(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    epochs: Optional[int] = None
    batch_size: Optional[int] = None
    learning_rate: Optional[float] = None


class TrainingExample(BaseModel):
    input: str
    output: str
    metadata: Dict[str, Any] = {}


class TrainResult(CamelModel):
    status: str = "success"
    epochs: int
    loss: Optional[float] = None
    accuracy: Optional[float] = None
    timestamp: str = Field(default_factory=utc_timestamp)


class EvalMetrics(CamelModel):
    perplexity: Optional[float] = None
    accuracy: Optional[float] = None
    f1_score: Optional[float] = None
    timestamp: str = Field(default_factory=utc_timestamp)


def merge_options(defaults: OptionsT, overrides: Union[OptionsT, Dict[str, Any], None]) -> OptionsT:
    """
    Overlay every explicitly set override onto ``defaults``.
    Dict overrides are validated against the defaults' model, so unknown keys fail.
    """
    if overrides is None:
        return defaults.model_copy()
    if isinstance(overrides, dict):
        overrides = type(defaults).model_validate(overrides)
    return defaults.model_copy(update=overrides.model_dump(exclude_none=True))


def prepare_examples(
        records: Iterable[Union[TrainingExample, Dict[str, Any]]],
        source: Optional[str] = None,
) -> List[TrainingExample]:
    """
    Normalize raw training records. ``prompt``/``completion`` are accepted in place of
    ``input``/``output``; missing text becomes an empty string.
    A malformed record raises InvalidTrainingDataError naming ``source`` and its index.
    """
    where = f"{source} " if source else ""
    prepared = []
    for index, item in enumerate(records):
        if isinstance(item, TrainingExample):
            prepared.append(item)
            continue
        if not isinstance(item, Mapping):
            raise InvalidTrainingDataError(
                f"{where}record {index}: expected an object, got {type(item).__name__}")
        try:
            prepared.append(TrainingExample(
                input=item.get("input") or item.get("prompt") or "",
                output=item.get("output") or item.get("completion") or "",
                metadata=item.get("metadata") or {},
            ))
        except ValidationError as e:
            raise InvalidTrainingDataError(f"{where}record {index}: {e}") from e
    return prepared
