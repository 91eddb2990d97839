from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from functools import lru_cache


BASE_DIR = Path(__file__).resolve().parent.parent


class ModelConfig(BaseModel):
    backend: str
    path: str = ""
    context_size: int = 2048
    batch_size: int = 512
    threads: int = 4
    options: Dict[str, Any] = {}


class TrainingDefaults(BaseModel):
    epochs: int
    batch_size: int
    learning_rate: float


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 基本环境
    APP_ENV: str = "test"   # e.g. "prod" or "test" or "dev"
    APP_NAME: str = "local_llm_api"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "local_llm_api.log"

    # 模型权重路径
    LLAMA_MODEL_PATH: str = "./models/llama2"
    MISTRAL_MODEL_PATH: str = "./models/mistral7b"
    GPTJ_MODEL_PATH: str = "./models/gptj"

    MODEL_CONFIG: Dict[str, ModelConfig] = Field(
        {
            "llama": {
                "backend": "llama_cpp",
                "context_size": 2048,
                "batch_size": 512,
                "threads": 4,
                "options": {"gpu_layers": 0},
            },
            "mistral": {
                "backend": "hf_pipeline",
                "context_size": 2048,
                "batch_size": 512,
                "threads": 4,
                "options": {"revision": "main"},
            },
            "gptj": {
                "backend": "onnx",
                "context_size": 2048,
                "batch_size": 512,
                "threads": 4,
            },
        }
    )

    # 限流：滑动窗口
    RATE_LIMIT_WINDOW_MS: int = 15 * 60 * 1000
    RATE_LIMIT_MAX_REQUESTS: int = 100

    # Training
    TRAINING_DATA_DIR: Path = BASE_DIR / "training" / "data"
    TRAINING_CHECKPOINT_DIR: Path = BASE_DIR / "training" / "checkpoints"
    TRAINING_FILE_EXTENSION: str = ".json"
    TRAINING_EPOCHS: int = 3
    TRAINING_BATCH_SIZE: int = 16
    LEARNING_RATE: float = 0.00005

    # 定时重训练（未设置时不启动）
    RETRAIN_SELECTOR: str = "all"
    RETRAIN_INTERVAL_MS: Optional[int] = None

    def get_model_configs(self) -> Dict[str, ModelConfig]:
        path_overrides = {
            "llama": self.LLAMA_MODEL_PATH,
            "mistral": self.MISTRAL_MODEL_PATH,
            "gptj": self.GPTJ_MODEL_PATH,
        }
        configs = {}
        for name, entry in self.MODEL_CONFIG.items():
            if isinstance(entry, dict):
                entry = ModelConfig.model_validate(entry)
            if name in path_overrides and not entry.path:
                entry = entry.model_copy(update={"path": path_overrides[name]})
            configs[name] = entry
        return configs

    def get_training_defaults(self) -> TrainingDefaults:
        return TrainingDefaults(
            epochs=self.TRAINING_EPOCHS,
            batch_size=self.TRAINING_BATCH_SIZE,
            learning_rate=self.LEARNING_RATE,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
