from __future__ import annotations
import asyncio
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from core.config import ModelConfig
from core.exceptions import InitializationError, ModelNotFoundError, NotInitializedError
from .base import ModelBackend
from .handle import ModelHandle
from .schemas import TrainingOptions, utc_timestamp
import logging

logger = logging.getLogger(__name__)

BackendCtor = Callable[[ModelConfig], ModelBackend]


def default_backends() -> Dict[str, BackendCtor]:
    from .gptj import GptjBackend
    from .llama import LlamaBackend
    from .mistral import MistralBackend

    return {
        LlamaBackend.family: LlamaBackend,
        MistralBackend.family: MistralBackend,
        GptjBackend.family: GptjBackend,
    }


class ModelRegistry:
    """
    逻辑模型名 -> ModelHandle 的唯一来源。

    用法示例:
        registry = ModelRegistry(settings.get_model_configs())
        registry.register_backend("onnx", GptjBackend)   # 注册 backend 构造器
        registry.initialize()                            # 按配置创建 handle
        handle = registry.get_handle("LLaMA")            # 名称大小写不敏感
    """

    def __init__(
            self,
            model_configs: Mapping[str, Union[ModelConfig, Dict[str, Any]]],
            backends: Optional[Mapping[str, BackendCtor]] = None,
            training_defaults: Optional[TrainingOptions] = None,
    ):
        self._configs = dict(model_configs)
        self._backends: Dict[str, BackendCtor] = dict(backends) if backends is not None else default_backends()
        self._training_defaults = training_defaults
        self._handles: Dict[str, ModelHandle] = {}
        self._initialized = False
        self._lock = threading.RLock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def register_backend(self, family: str, ctor: BackendCtor) -> None:
        if not callable(ctor):
            raise TypeError("ctor must be callable")
        logger.debug("Register backend %s -> %s", family, getattr(ctor, "__name__", str(ctor)))
        self._backends[family] = ctor

    def initialize(self) -> None:
        """
        为每个配置的模型创建一个 handle。重复调用会丢弃旧的 handle，
        调用方应先检查 initialized。
        """
        with self._lock:
            if self._initialized:
                logger.warning("ModelRegistry initialized twice; previous handles are discarded")
            logger.info("Initializing ModelRegistry for %s", ", ".join(self._configs) or "<none>")
            handles: Dict[str, ModelHandle] = {}
            for name, raw in self._configs.items():
                key = name.lower()
                if key in handles:
                    raise InitializationError(f"duplicate model name '{name}' (names are case-insensitive)")
                handles[key] = self._build_handle(key, raw)
            self._handles = handles
            self._initialized = True
            logger.info("ModelRegistry initialized with %d models", len(handles))

    def _build_handle(self, name: str, raw: Union[ModelConfig, Dict[str, Any]]) -> ModelHandle:
        try:
            config = raw if isinstance(raw, ModelConfig) else ModelConfig.model_validate(raw)
        except ValidationError as e:
            raise InitializationError(f"invalid configuration for model '{name}': {e}") from e
        if not config.path:
            raise InitializationError(f"model '{name}' has no path configured")
        ctor = self._backends.get(config.backend)
        if ctor is None:
            raise InitializationError(f"model '{name}' uses unknown backend '{config.backend}'")
        try:
            backend = ctor(config)
        except Exception as e:
            raise InitializationError(f"failed to construct backend for model '{name}': {e}") from e
        return ModelHandle(name, config, backend, training_defaults=self._training_defaults)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError()

    def get_handle(self, name: str) -> ModelHandle:
        with self._lock:
            self._require_initialized()
            handle = self._handles.get(name.lower())
            if handle is None:
                raise ModelNotFoundError(name)
            return handle

    def get_all_handles(self) -> Dict[str, ModelHandle]:
        with self._lock:
            self._require_initialized()
            return dict(self._handles)

    def get_info(self) -> Dict[str, Any]:
        with self._lock:
            self._require_initialized()
            return {
                "models": {name: handle.info() for name, handle in self._handles.items()},
                "timestamp": utc_timestamp(),
            }

    def reset(self) -> None:
        """显式重置：丢弃所有 handle，允许重新 initialize()。"""
        with self._lock:
            self._handles = {}
            self._initialized = False

    # ---------------- lifecycle ----------------
    async def shutdown(self) -> None:
        """并行 unload 所有 handle；单个失败只记录日志。"""
        if not self._initialized:
            return
        handles = self.get_all_handles()
        outcomes = await asyncio.gather(*(h.unload() for h in handles.values()), return_exceptions=True)
        for name, outcome in zip(handles, outcomes):
            if isinstance(outcome, Exception):
                logger.error("model %s unload() failed during shutdown: %s", name, outcome)
        logger.info("ModelRegistry: shutdown finished for %s", ", ".join(handles))
