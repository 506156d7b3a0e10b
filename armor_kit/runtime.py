from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np

from .backends import CallableBackend, InferFn
from .config import DetectorConfig
from .letterbox import letterbox
from .postprocess import ArmorPostConfig, ArmorPostprocessor
from .types import Detection


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# (detections, timestamp_ns, source image)
DetectorCallback = Callable[[List[Detection], int, np.ndarray], None]


def preprocess(image_bgr: np.ndarray) -> np.ndarray:
    """Letterboxed BGR uint8 (H, W, 3) -> RGB float32 blob (1, 3, H, W) in [0, 1]."""
    blob = image_bgr[:, :, ::-1].astype(np.float32) / 255.0
    blob = np.transpose(blob, (2, 0, 1))[None, ...]
    return np.ascontiguousarray(blob)


def load_backend(model_path: PathLike, *, backend: Optional[str] = None, device: str = "CPU") -> object:
    """
    Build the shared inference backend for a model on disk.

    Args:
        model_path: path to the model file
        backend: "onnxruntime", "torchscript", or None to infer from the extension
        device: device identifier, e.g. "CPU" or "GPU"
    """

    resolved = Path(model_path).expanduser().resolve()
    chosen = backend
    if chosen is None:
        suffix = resolved.suffix.lower()
        if suffix == ".onnx":
            chosen = "onnxruntime"
        elif suffix in {".torchscript", ".ts", ".pt"}:
            chosen = "torchscript"
        else:
            raise ValueError(
                f"Could not infer backend from extension '{suffix}'. Pass backend=... explicitly."
            )

    chosen = chosen.lower()
    if chosen == "onnxruntime":
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        return OnnxRuntimeBackend(resolved, OnnxRuntimeBackendConfig(device=device))

    if chosen == "torchscript":
        from .backends.torchscript_backend import TorchScriptBackend, TorchScriptBackendConfig

        torch_device = device.lower()
        if torch_device.startswith("gpu"):
            torch_device = "cuda" + torch_device[3:]
        return TorchScriptBackend(resolved, TorchScriptBackendConfig(device=torch_device))

    raise ValueError(f"Unsupported backend: {backend!r}")


class ArmorDetector:
    """
    Asynchronous armor detector: letterbox -> inference -> proposals -> NMS -> callback.

    `push_input()` letterboxes on the caller's thread and runs the rest on a
    worker pool. The compiled model is shared; every frame gets its own
    inference request. Frames may complete in any order.

    Pass `infer_fn` to use a custom inference engine instead of `config.model_path`.
    """

    def __init__(
        self,
        config: DetectorConfig,
        *,
        infer_fn: Optional[InferFn] = None,
        auto_init: bool = True,
    ):
        if config.model_path is None and infer_fn is None:
            raise ValueError("Either config.model_path or infer_fn must be provided.")
        self.config = config
        self._infer_fn = infer_fn
        self.post = ArmorPostprocessor(
            ArmorPostConfig(
                conf_threshold=config.conf_threshold,
                nms_threshold=config.nms_threshold,
                top_k=config.top_k,
            )
        )
        self._backend: Optional[object] = None
        self._callback: Optional[DetectorCallback] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()
        self._closed = False

        if auto_init:
            self.init()

    def init(self) -> None:
        """(Re)build the shared inference backend and start the worker pool."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Detector is closed.")

        if self._infer_fn is not None:
            backend = CallableBackend(self._infer_fn)
        else:
            backend = load_backend(self.config.model_path, backend=self.config.backend, device=self.config.device)
        logger.info(
            "Armor detector initialized (backend=%s, device=%s, providers=%s, workers=%d)",
            type(backend).__name__,
            self.config.device,
            getattr(backend, "providers_in_use", "-"),
            self.config.max_workers,
        )

        with self._lock:
            if self._closed:
                raise RuntimeError("Detector is closed.")
            self._backend = backend
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.max_workers, thread_name_prefix="armor-detect"
                )

    @property
    def initialized(self) -> bool:
        return self._backend is not None

    def set_callback(self, callback: Optional[DetectorCallback]) -> None:
        """
        Install the callback used for every frame that completes from now on.
        Not synchronized against frames in flight: the callback seen by a
        frame is whichever was set last before it finished.
        """
        self._callback = callback

    def push_input(self, image: np.ndarray, timestamp_ns: int) -> "Future[bool]":
        """
        Submit one BGR frame. Returns a future resolving to True once the
        callback has been called, or False for an empty frame or when no
        callback was registered. Inference errors surface from `result()`.
        """
        if image is None or not hasattr(image, "shape"):
            raise TypeError("image must be a NumPy array (BGR).")

        if image.size == 0:
            logger.debug("Rejected empty frame (timestamp=%d)", timestamp_ns)
            rejected: "Future[bool]" = Future()
            rejected.set_result(False)
            return rejected

        with self._lock:
            if self._closed:
                raise RuntimeError("Detector is closed.")
            if self._backend is None or self._executor is None:
                raise RuntimeError("Detector is not initialized; call init() first.")
            backend = self._backend
            executor = self._executor

        resized, transform_matrix = letterbox(image, new_shape=self.config.input_shape)
        return executor.submit(self._process, backend, resized, transform_matrix, timestamp_ns, image)

    def _process(
        self,
        backend: object,
        resized: np.ndarray,
        transform_matrix: np.ndarray,
        timestamp_ns: int,
        src_image: np.ndarray,
    ) -> bool:
        blob = preprocess(resized)
        request = backend.create_request()
        try:
            output = request.infer(blob)
        except Exception:
            logger.exception("Inference failed (timestamp=%d)", timestamp_ns)
            raise

        detections = self.post.process(output, transform_matrix)

        callback = self._callback
        if callback is None:
            logger.warning("No callback registered; dropping %d detections (timestamp=%d)", len(detections), timestamp_ns)
            return False

        callback(detections, timestamp_ns, src_image)
        return True

    def close(self, wait: bool = True) -> None:
        """Stop accepting frames and shut the worker pool down."""
        with self._lock:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def __enter__(self) -> "ArmorDetector":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
