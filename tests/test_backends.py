import importlib.util
import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest import mock

import numpy as np

from armor_kit.config import DetectorConfig
from armor_kit.runtime import ArmorDetector, load_backend
from armor_kit.types import ArmorColor, ArmorNumber

HAS_TORCH = importlib.util.find_spec("torch") is not None
HAS_ORT = importlib.util.find_spec("onnxruntime") is not None
HAS_ONNX = importlib.util.find_spec("onnx") is not None

if HAS_TORCH:
    import torch

    class FakeArmorNet(torch.nn.Module):
        """Returns a fixed armor table regardless of the input frame."""

        def __init__(self, table: torch.Tensor):
            super().__init__()
            self.register_buffer("table", table)

        def forward(self, x: torch.Tensor) -> torch.Tensor:
            return self.table + x.mean() * 0.0


def fixed_table() -> np.ndarray:
    buf = np.zeros((1, 3549, 21), dtype=np.float32)
    buf[0, 7, 0:8] = [10, 10, 10, 40, 60, 40, 60, 10]
    buf[0, 7, 8] = 0.85
    buf[0, 7, 9 + 0] = 1.0
    buf[0, 7, 13 + 5] = 1.0
    return buf


@unittest.skipUnless(HAS_TORCH, "torch is not installed")
class TestTorchScriptBackend(unittest.TestCase):
    def test_detector_runs_scripted_model(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            model_path = Path(tmp) / "armor.pt"
            scripted = torch.jit.script(FakeArmorNet(torch.from_numpy(fixed_table())))
            scripted.save(str(model_path))

            seen = []
            cfg = DetectorConfig(model_path=str(model_path), device="CPU", conf_threshold=0.5)
            with ArmorDetector(cfg) as det:
                det.set_callback(lambda dets, ts, img: seen.append(dets))
                futures = [det.push_input(np.zeros((416, 416, 3), dtype=np.uint8), i) for i in range(4)]
                self.assertEqual([f.result(timeout=30) for f in futures], [True] * 4)

        self.assertEqual(len(seen), 4)
        armor = seen[0][0]
        self.assertIs(armor.color, ArmorColor.BLUE)
        self.assertIs(armor.number, ArmorNumber.NO5)
        self.assertAlmostEqual(armor.confidence, 0.85, places=5)

    def test_missing_model_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_backend("does/not/exist.pt")


def write_fixed_onnx(path: Path) -> None:
    """Graph returning the fixed armor table plus ReduceMean(images) * 0."""
    from onnx import TensorProto, helper, numpy_helper, save

    table = numpy_helper.from_array(fixed_table(), name="table")
    zero = numpy_helper.from_array(np.zeros((), dtype=np.float32), name="zero")
    nodes = [
        helper.make_node("ReduceMean", ["images"], ["mean"], keepdims=0),
        helper.make_node("Mul", ["mean", "zero"], ["nothing"]),
        helper.make_node("Add", ["table", "nothing"], ["output"]),
    ]
    graph = helper.make_graph(
        nodes,
        "fixed_armor",
        [helper.make_tensor_value_info("images", TensorProto.FLOAT, [1, 3, 416, 416])],
        [helper.make_tensor_value_info("output", TensorProto.FLOAT, [1, 3549, 21])],
        initializer=[table, zero],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    save(model, str(path))


class TestSelectProviders(unittest.TestCase):
    def test_keeps_available_in_order(self) -> None:
        from armor_kit.backends.onnxruntime_backend import select_providers

        kept = select_providers(
            ["CUDAExecutionProvider", "CPUExecutionProvider"],
            ["CPUExecutionProvider", "CUDAExecutionProvider"],
        )
        self.assertEqual(kept, ["CUDAExecutionProvider", "CPUExecutionProvider"])

    def test_dropped_provider_is_logged(self) -> None:
        from armor_kit.backends.onnxruntime_backend import select_providers

        with self.assertLogs("armor_kit.backends.onnxruntime_backend", level="WARNING") as logs:
            kept = select_providers(["CUDAExecutionProvider", "CPUExecutionProvider"], ["CPUExecutionProvider"])
        self.assertEqual(kept, ["CPUExecutionProvider"])
        self.assertIn("CUDAExecutionProvider", logs.output[0])

    def test_nothing_available_raises(self) -> None:
        from armor_kit.backends.onnxruntime_backend import select_providers

        with self.assertRaises(ValueError):
            select_providers(["CUDAExecutionProvider"], ["CPUExecutionProvider"])


@unittest.skipUnless(HAS_ORT, "onnxruntime is not installed")
class TestOnnxRuntimeBackend(unittest.TestCase):
    def test_missing_model_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_backend("does/not/exist.onnx", device="GPU")

    def test_unknown_device(self) -> None:
        from armor_kit.backends.onnxruntime_backend import providers_for_device

        self.assertEqual(providers_for_device("cpu"), ["CPUExecutionProvider"])
        self.assertEqual(providers_for_device("GPU:0")[0], "CUDAExecutionProvider")
        with self.assertRaises(ValueError):
            providers_for_device("TPU")

    @unittest.skipUnless(HAS_ONNX, "onnx is not installed")
    def test_detector_runs_onnx_model_concurrently(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            model_path = Path(tmp) / "armor.onnx"
            write_fixed_onnx(model_path)

            seen = []
            cfg = DetectorConfig(model_path=str(model_path), device="CPU", conf_threshold=0.5, max_workers=4)
            with ArmorDetector(cfg) as det:
                det.set_callback(lambda dets, ts, img: seen.append((ts, dets)))
                frame = np.zeros((480, 640, 3), dtype=np.uint8)
                with ThreadPoolExecutor(max_workers=4) as submitters:
                    futures = list(submitters.map(lambda i: det.push_input(frame, i), range(8)))
                self.assertEqual([f.result(timeout=30) for f in futures], [True] * 8)

        self.assertEqual(sorted(ts for ts, _ in seen), list(range(8)))
        armor = seen[0][1][0]
        self.assertIs(armor.color, ArmorColor.BLUE)
        self.assertIs(armor.number, ArmorNumber.NO5)
        self.assertAlmostEqual(armor.confidence, 0.85, places=5)
        # letterbox of 640x480: scale 0.65, 52 px of padding on top
        expected = (np.array([[10, 10], [10, 40], [60, 40], [60, 10]], dtype=np.float32) - [0, 52]) / 0.65
        self.assertTrue(np.allclose(np.array(armor.corners), expected, atol=1e-2))

    @unittest.skipUnless(HAS_ONNX, "onnx is not installed")
    def test_gpu_request_without_cuda_warns_and_reports_cpu(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            model_path = Path(tmp) / "armor.onnx"
            write_fixed_onnx(model_path)

            with mock.patch("onnxruntime.get_available_providers", return_value=["CPUExecutionProvider"]):
                with self.assertLogs("armor_kit", level="WARNING"):
                    backend = load_backend(model_path, device="GPU")
            self.assertEqual(tuple(backend.providers_in_use), ("CPUExecutionProvider",))

            with mock.patch("onnxruntime.get_available_providers", return_value=["CPUExecutionProvider"]):
                from armor_kit.backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

                with self.assertRaises(ValueError):
                    OnnxRuntimeBackend(model_path, OnnxRuntimeBackendConfig(providers=["CUDAExecutionProvider"]))



if __name__ == "__main__":
    unittest.main()
