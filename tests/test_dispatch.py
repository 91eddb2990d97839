import tempfile
import unittest
from pathlib import Path

from core.exceptions import (
    GenerationFailure,
    LoadFailure,
    ModelNotFoundError,
    NoModelsRegisteredError,
    NotInitializedError,
    UnsupportedOperationError,
)
from models.handle import ModelState
from services.dispatch_service.service import DispatchEngine, FanOutResult
from tests.fakes import fake_config, fake_registry


class DispatchEngineTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def engine(self, configs, initialize=True):
        return DispatchEngine(fake_registry(configs, initialize=initialize))

    async def test_fan_out_isolates_one_failure(self):
        engine = self.engine({
            "alpha": fake_config(self.tmp),
            "beta": fake_config(self.tmp),
            "gamma": fake_config(self.tmp, fail_on=["generate"]),
        })
        result = await engine.all("generate", "hi")
        self.assertIsInstance(result, FanOutResult)
        self.assertEqual(set(result.outcomes), {"alpha", "beta", "gamma"})
        self.assertEqual(result.outcomes["alpha"].value, "echo: hi")
        self.assertEqual(result.outcomes["beta"].value, "echo: hi")
        error = result.outcomes["gamma"].error
        self.assertIsInstance(error, GenerationFailure)
        self.assertEqual(error.model_name, "gamma")
        self.assertEqual(list(result.failed), ["gamma"])
        self.assertTrue(result.timestamp)

    async def test_load_all_with_one_invalid_path(self):
        engine = self.engine({
            "alpha": fake_config(self.tmp),
            "beta": fake_config(self.tmp / "does-not-exist"),
        })
        result = await engine.all("load")
        self.assertTrue(result.outcomes["alpha"].ok)
        self.assertIsInstance(result.outcomes["beta"].error, LoadFailure)
        registry = engine.registry
        self.assertIs(registry.get_handle("alpha").state, ModelState.LOADED)
        self.assertIs(registry.get_handle("beta").state, ModelState.FAILED)

    async def test_single_propagates_failure(self):
        engine = self.engine({"beta": fake_config(self.tmp / "does-not-exist")})
        with self.assertRaises(LoadFailure):
            await engine.single("beta", "load")

    async def test_single_returns_value(self):
        engine = self.engine({"alpha": fake_config(self.tmp)})
        self.assertEqual(await engine.single("ALPHA", "generate", "x"), "echo: x")

    async def test_unknown_model(self):
        engine = self.engine({"alpha": fake_config(self.tmp)})
        with self.assertRaises(ModelNotFoundError):
            await engine.single("nope", "generate", "x")

    async def test_unsupported_operation(self):
        engine = self.engine({"alpha": fake_config(self.tmp)})
        with self.assertRaises(UnsupportedOperationError):
            await engine.single("alpha", "info")
        with self.assertRaises(UnsupportedOperationError):
            await engine.all("_ensure_loaded")

    async def test_structural_failures(self):
        with self.assertRaises(NoModelsRegisteredError):
            await self.engine({}).all("load")
        with self.assertRaises(NotInitializedError):
            await self.engine({"alpha": fake_config(self.tmp)}, initialize=False).all("load")

    async def test_non_backend_error_is_captured(self):
        engine = self.engine({"alpha": fake_config(self.tmp), "beta": fake_config(self.tmp)})
        result = await engine.all("generate", "x", {"bogus": 1})
        self.assertEqual(len(result.failed), 2)
        self.assertEqual(result.failed["alpha"].model_name, "alpha")

    async def test_dispatch_target_all(self):
        engine = self.engine({"alpha": fake_config(self.tmp)})
        self.assertIsInstance(await engine.dispatch("ALL", "load"), FanOutResult)
        self.assertIsNone(await engine.dispatch("alpha", "unload"))

    async def test_to_dict(self):
        engine = self.engine({
            "alpha": fake_config(self.tmp),
            "gamma": fake_config(self.tmp, fail_on=["generate"]),
        })
        body = (await engine.all("generate", "hi")).to_dict()
        self.assertEqual(body["operation"], "generate")
        self.assertEqual(body["results"]["alpha"], {"status": "success", "model": "alpha", "result": "echo: hi"})
        self.assertEqual(body["results"]["gamma"]["status"], "error")
        self.assertEqual(body["results"]["gamma"]["error"], "GENERATION_FAILURE")
        self.assertEqual(body["results"]["gamma"]["model"], "gamma")


if __name__ == "__main__":
    unittest.main()
