import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from core.exceptions import BackendError, NoModelsRegisteredError, UnsupportedOperationError
from models.handle import ModelHandle
from models.registry import ModelRegistry
from models.schemas import utc_timestamp

logger = logging.getLogger(__name__)

OPERATIONS = frozenset({"load", "unload", "generate", "train", "evaluate", "save", "checkpoint"})


def _jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True)
    return value


@dataclass
class Outcome:
    """一个模型在 fan-out 中的结果：value 与 error 二选一。"""
    model: str
    value: Any = None
    error: Optional[BackendError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return self.error.to_dict()
        return {"status": "success", "model": self.model, "result": _jsonable(self.value)}


@dataclass
class FanOutResult:
    operation: str
    outcomes: Dict[str, Outcome]
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def failed(self) -> Dict[str, BackendError]:
        return {name: o.error for name, o in self.outcomes.items() if o.error is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "results": {name: o.to_dict() for name, o in self.outcomes.items()},
            "timestamp": self.timestamp,
        }


class DispatchEngine:
    """
    把一次操作路由到单个 handle 或所有 handle。

    single() 原样抛出 backend 错误；all() 并发执行，每个模型的失败只记录在它自己的
    Outcome 里，整体调用只在 registry 未初始化或没有模型时失败。
    """

    def __init__(self, registry: ModelRegistry):
        self.registry = registry

    @staticmethod
    def _bind(handle: ModelHandle, op: str):
        if op not in OPERATIONS:
            raise UnsupportedOperationError(op)
        return getattr(handle, op)

    async def single(self, name: str, op: str, *args: Any, **kwargs: Any) -> Any:
        handle = self.registry.get_handle(name)
        return await self._bind(handle, op)(*args, **kwargs)

    async def all(self, op: str, *args: Any, **kwargs: Any) -> FanOutResult:
        handles = self.registry.get_all_handles()
        if not handles:
            raise NoModelsRegisteredError()
        calls = {name: self._bind(handle, op) for name, handle in handles.items()}
        logger.info("Dispatching %s to %s", op, ", ".join(calls))
        results = await asyncio.gather(*(call(*args, **kwargs) for call in calls.values()), return_exceptions=True)

        outcomes: Dict[str, Outcome] = {}
        for name, result in zip(calls, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, BackendError):
                outcomes[name] = Outcome(name, error=result)
            elif isinstance(result, Exception):
                # 非 backend 错误（如参数校验失败）同样按模型隔离
                outcomes[name] = Outcome(name, error=BackendError(name, result))
            else:
                outcomes[name] = Outcome(name, value=result)
        failed = [name for name, o in outcomes.items() if not o.ok]
        if failed:
            logger.error("%s failed for %s", op, ", ".join(failed))
        return FanOutResult(operation=op, outcomes=outcomes)

    async def dispatch(self, target: str, op: str, *args: Any, **kwargs: Any) -> Any:
        """``target == "all"`` 走 fan-out，否则按模型名单发。"""
        if target.lower() == "all":
            return await self.all(op, *args, **kwargs)
        return await self.single(target, op, *args, **kwargs)
