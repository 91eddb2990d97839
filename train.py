"""
命令行训练入口：

    python train.py                 # 训练所有模型并为每个模型保存 checkpoint
    python train.py --model mistral
    python train.py --data-dir ./my_data --epochs 1
"""
import argparse
import asyncio
import logging
import sys

from core.config import get_settings
from core.exceptions import ModelServiceError
from core.logging import setup_logging
from models.registry import ModelRegistry
from models.schemas import TrainingOptions
from services.dispatch_service.service import DispatchEngine, FanOutResult
from services.training_service.service import TrainingService

logger = logging.getLogger("train")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Train local models on the JSON files in the training data directory")
    parser.add_argument("--model", default="all", help="model name, or 'all'")
    parser.add_argument("--data-dir", default=None, help="override TRAINING_DATA_DIR")
    parser.add_argument("--checkpoint-dir", default=None, help="override TRAINING_CHECKPOINT_DIR")
    parser.add_argument("--epochs", type=int, default=None)
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--learning-rate", type=float, default=None)
    parser.add_argument("--log-level", default=None, help="override LOG_LEVEL")
    return parser.parse_args(argv)


async def run(args) -> int:
    settings = get_settings()
    defaults = settings.get_training_defaults()
    training_defaults = TrainingOptions(**defaults.model_dump())
    registry = ModelRegistry(settings.get_model_configs(), training_defaults=training_defaults)
    try:
        registry.initialize()
        svc = TrainingService(
            DispatchEngine(registry),
            data_dir=args.data_dir or settings.TRAINING_DATA_DIR,
            checkpoint_dir=args.checkpoint_dir or settings.TRAINING_CHECKPOINT_DIR,
            file_extension=settings.TRAINING_FILE_EXTENSION,
            training_defaults=training_defaults,
        )
        if not svc.find_training_data_files():
            logger.info("No training data files found, creating a sample file")
            svc.create_sample_training_file()
        files = svc.find_training_data_files()
        if not files:
            logger.error("Cannot find any training data files in %s", svc.data_dir)
            return 1

        examples = svc.merge_training_data(files)
        overrides = TrainingOptions(epochs=args.epochs, batch_size=args.batch_size, learning_rate=args.learning_rate)
        result = await svc.train(args.model, examples, training_defaults.model_copy(
            update=overrides.model_dump(exclude_none=True)))
        if isinstance(result, FanOutResult):
            for name, failure in result.failed.items():
                logger.error("Training %s failed: %s", name, failure)
        logger.info("Training finished")

        names = list(registry.get_all_handles()) if args.model.lower() == "all" else [args.model]
        for name in names:
            try:
                path = await svc.save_checkpoint(name)
                logger.info("Checkpoint for %s saved to %s", name, path)
            except ModelServiceError as e:
                logger.error("Checkpoint for %s failed: %s", name, e)
    except ModelServiceError as e:
        logger.error("Training run aborted: %s", e)
        return 1
    finally:
        await registry.shutdown()
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(level=args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
