import tempfile
import unittest
from pathlib import Path
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.config import get_settings
from services.dispatch_service import register as register_dispatch, router as dispatch_router
from services.training_service import RetrainingScheduler, TrainingService, router as training_router
from utils.rate_limiter import SlidingWindowRateLimiter
from tests.fakes import fake_config, fake_registry


class APITestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        app = FastAPI()
        app.include_router(dispatch_router, prefix="/api")
        app.include_router(training_router, prefix="/api/training")

        registry = fake_registry({
            "alpha": fake_config(self.tmp),
            "beta": fake_config(self.tmp, fail_on=["generate"]),
        })
        dispatch = register_dispatch(app.state, registry, get_settings(),
                                     rate_limiter=SlidingWindowRateLimiter(window_ms=60_000, max_requests=3))
        app.state.training_service = TrainingService(dispatch, self.tmp / "data", self.tmp / "checkpoints")
        app.state.scheduler = RetrainingScheduler(app.state.training_service)
        self.app = app
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        self._tmp.cleanup()

    def test_status(self):
        r = self.client.get("/api/status")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["initialized"])

    def test_models(self):
        r = self.client.get("/api/models")
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body["status"], "success")
        self.assertEqual(set(body["data"]["models"]), {"alpha", "beta"})

    def test_generate_single(self):
        r = self.client.post("/api/generate/alpha", json={"prompt": "hello", "options": {"maxTokens": 8}})
        self.assertEqual(r.status_code, 200)
        data = r.json()["data"]
        self.assertEqual(data["generated_text"], "echo: hello")
        self.assertEqual(data["model"], "alpha")

    def test_generate_all_keeps_partial_failures(self):
        r = self.client.post("/api/generate/all", json={"prompt": "hello"})
        self.assertEqual(r.status_code, 200)
        results = r.json()["data"]["results"]
        self.assertEqual(results["alpha"]["result"], "echo: hello")
        self.assertEqual(results["beta"]["error"], "GENERATION_FAILURE")

    def test_generate_single_failure(self):
        r = self.client.post("/api/generate/beta", json={"prompt": "hello"})
        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.json()["detail"]["model"], "beta")

    def test_generate_unknown_model(self):
        r = self.client.post("/api/generate/nope", json={"prompt": "hello"})
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.json()["detail"]["error"], "MODEL_NOT_FOUND")

    def test_generate_validation(self):
        self.assertEqual(self.client.post("/api/generate/alpha", json={"prompt": ""}).status_code, 422)
        r = self.client.post("/api/generate/alpha", json={"prompt": "x", "options": {"bogus": 1}})
        self.assertEqual(r.status_code, 422)

    def test_generate_rate_limited(self):
        codes = [self.client.post("/api/generate/alpha", json={"prompt": "x"}).status_code for _ in range(4)]
        self.assertEqual(codes, [200, 200, 200, 429])

    def test_load_and_unload(self):
        r = self.client.post("/api/models/alpha/load")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["data"]["state"], "loaded")
        r = self.client.post("/api/models/alpha/unload")
        self.assertEqual(r.json()["data"]["state"], "unloaded")
        r = self.client.post("/api/models/all/load")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["data"]["operation"], "load")

    def test_training_run_skips_without_data(self):
        r = self.client.post("/api/training/run", json={"model": "all"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["data"]["status"], "skipped")

    def test_training_run_with_examples(self):
        r = self.client.post("/api/training/run", json={
            "model": "alpha",
            "examples": [{"input": "q", "output": "a"}],
            "options": {"epochs": 2},
        })
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["data"]["epochs"], 2)

    def test_training_run_empty_examples(self):
        r = self.client.post("/api/training/run", json={"model": "alpha", "examples": []})
        self.assertEqual(r.status_code, 400)

    def test_training_run_malformed_examples(self):
        r = self.client.post("/api/training/run", json={"model": "alpha", "examples": [{"input": 5, "output": "x"}]})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["detail"]["error"], "INVALID_TRAINING_DATA")

    def test_checkpoint(self):
        r = self.client.post("/api/training/checkpoint/alpha")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(Path(r.json()["data"]["path"]).name.startswith("alpha_"))

    def test_schedule_lifecycle(self):
        with TestClient(self.app) as client:
            r = client.post("/api/training/schedule", json={"model": "all", "interval_ms": 3_600_000})
            self.assertEqual(r.status_code, 201)
            job_id = r.json()["job_id"]
            self.assertEqual([j["job_id"] for j in client.get("/api/training/schedule").json()], [job_id])
            self.assertEqual(client.delete(f"/api/training/schedule/{job_id}").status_code, 200)
            self.assertEqual(client.delete(f"/api/training/schedule/{job_id}").status_code, 404)


class MainAppTestCase(unittest.TestCase):
    def test_routes_registered(self):
        from main import app

        self.assertEqual(app.url_path_for("status"), "/api/status")
        self.assertEqual(app.url_path_for("list_models"), "/api/models")
        self.assertEqual(app.url_path_for("generate", model="all"), "/api/generate/all")
        self.assertEqual(app.url_path_for("load_model", model="llama"), "/api/models/llama/load")
        self.assertEqual(app.url_path_for("run_training"), "/api/training/run")
        self.assertEqual(app.url_path_for("cancel_schedule", job_id="j1"), "/api/training/schedule/j1")


if __name__ == "__main__":
    unittest.main()
