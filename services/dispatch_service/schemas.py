from typing import Any, Optional
from pydantic import BaseModel, Field

from models.schemas import GenerationOptions


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="提示词")
    options: Optional[GenerationOptions] = Field(None, description="生成参数，未设置的字段使用模型默认值")


class ApiResponse(BaseModel):
    status: str = "success"
    data: Any = None


class StatusResponse(BaseModel):
    status: str = "success"
    message: str
    initialized: bool
    timestamp: str
