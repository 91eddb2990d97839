from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from models.schemas import TrainingOptions


class TrainingRunRequest(BaseModel):
    model: str = Field("all", description="模型名或 all")
    examples: Optional[List[Dict[str, Any]]] = Field(
        None, description="训练样本；为空时从训练数据目录读取并合并所有文件")
    options: Optional[TrainingOptions] = None


class ScheduleRequest(BaseModel):
    model: str = Field("all", description="模型名或 all")
    interval_ms: int = Field(24 * 60 * 60 * 1000, gt=0, description="重训练间隔（毫秒）")


class ScheduledJobResponse(BaseModel):
    job_id: str
    selector: str
    interval_ms: int
    created_at: str
    active: bool
    firings: int
    skipped: int
    failures: int
    last_error: Optional[str] = None
    last_fired_at: Optional[str] = None
