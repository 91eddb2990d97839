import unittest
from pydantic import ValidationError

from models.base import ModelBackend
from core.exceptions import InvalidTrainingDataError
from models.schemas import GenerationOptions, TrainingOptions, merge_options, prepare_examples


class MergeOptionsTestCase(unittest.TestCase):
    def test_none_returns_defaults(self):
        merged = merge_options(ModelBackend.default_options, None)
        self.assertEqual(merged, ModelBackend.default_options)
        self.assertIsNot(merged, ModelBackend.default_options)

    def test_overrides_replace_only_given_fields(self):
        merged = merge_options(ModelBackend.default_options, {"temperature": 0.2, "maxTokens": 16})
        self.assertEqual(merged.temperature, 0.2)
        self.assertEqual(merged.max_tokens, 16)
        self.assertEqual(merged.top_p, 0.95)
        self.assertEqual(merged.top_k, 40)
        self.assertEqual(merged.repetition_penalty, 1.1)

    def test_out_of_range_values_pass_through(self):
        merged = merge_options(ModelBackend.default_options, GenerationOptions(temperature=7.5, top_k=-1))
        self.assertEqual(merged.temperature, 7.5)
        self.assertEqual(merged.top_k, -1)

    def test_unknown_key_rejected(self):
        with self.assertRaises(ValidationError):
            merge_options(ModelBackend.default_options, {"temprature": 0.1})

    def test_training_options(self):
        defaults = TrainingOptions(epochs=3, batch_size=16, learning_rate=5e-5)
        merged = merge_options(defaults, {"epochs": 1})
        self.assertEqual((merged.epochs, merged.batch_size), (1, 16))


class PrepareExamplesTestCase(unittest.TestCase):
    def test_prompt_completion_aliases(self):
        examples = prepare_examples([
            {"prompt": "q", "completion": "a"},
            {"input": "x", "output": "y", "metadata": {"tag": 1}},
            {},
        ])
        self.assertEqual([(e.input, e.output) for e in examples], [("q", "a"), ("x", "y"), ("", "")])
        self.assertEqual(examples[1].metadata, {"tag": 1})

    def test_malformed_records_rejected(self):
        with self.assertRaises(InvalidTrainingDataError) as ctx:
            prepare_examples([{"input": "ok", "output": "ok"}, "oops"], source="data.json")
        self.assertIn("data.json record 1", str(ctx.exception))
        with self.assertRaises(InvalidTrainingDataError) as ctx:
            prepare_examples([{"input": 5, "output": "x"}])
        self.assertIn("record 0", str(ctx.exception))
        self.assertEqual(ctx.exception.status_code, 400)


if __name__ == "__main__":
    unittest.main()
