import logging
import tempfile
import unittest
from logging.handlers import RotatingFileHandler
from pathlib import Path

from core.config import ModelConfig, Settings
from core.logging import setup_logging


class SettingsTestCase(unittest.TestCase):
    def test_model_paths_filled_from_path_fields(self):
        settings = Settings(LLAMA_MODEL_PATH="/weights/llama.gguf")
        configs = settings.get_model_configs()
        self.assertEqual(set(configs), {"llama", "mistral", "gptj"})
        self.assertIsInstance(configs["llama"], ModelConfig)
        self.assertEqual(configs["llama"].path, "/weights/llama.gguf")
        self.assertEqual(configs["llama"].backend, "llama_cpp")
        self.assertEqual(configs["gptj"].backend, "onnx")

    def test_explicit_path_wins(self):
        settings = Settings(MODEL_CONFIG={"mistral": {"backend": "hf_pipeline", "path": "/hub/mistral"}})
        self.assertEqual(settings.get_model_configs()["mistral"].path, "/hub/mistral")

    def test_defaults(self):
        settings = Settings()
        self.assertEqual(settings.RATE_LIMIT_WINDOW_MS, 900_000)
        self.assertEqual(settings.RATE_LIMIT_MAX_REQUESTS, 100)
        defaults = settings.get_training_defaults()
        self.assertEqual((defaults.epochs, defaults.batch_size, defaults.learning_rate), (3, 16, 5e-5))


class SetupLoggingTestCase(unittest.TestCase):
    def setUp(self):
        root = logging.getLogger()
        self._saved = (root.level, list(root.handlers))

    def tearDown(self):
        root = logging.getLogger()
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        root.setLevel(self._saved[0])
        for h in self._saved[1]:
            root.addHandler(h)

    def test_overrides_and_file_handler(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_file = str(Path(tmp) / "svc.log")
            self.assertEqual(setup_logging(level="debug", log_file=log_file), logging.DEBUG)
            handlers = logging.getLogger().handlers
            self.assertEqual(len(handlers), 2)
            self.assertTrue(any(isinstance(h, RotatingFileHandler) for h in handlers))
            self.assertEqual(logging.getLogger("transformers").level, logging.WARNING)
            setup_logging(level="warning", log_file="")
            self.assertEqual(len(logging.getLogger().handlers), 1)
            self.assertEqual(logging.getLogger().level, logging.WARNING)


if __name__ == "__main__":
    unittest.main()
