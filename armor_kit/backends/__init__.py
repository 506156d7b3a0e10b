"""
Inference backends for armor_kit.

Every backend owns one compiled model shared by all worker threads and hands
out a fresh request object per inference call via `create_request()`.
Backends are kept in a separate module so pre/post-processing stays usable
without installing inference runtimes.
"""

from __future__ import annotations

from typing import Callable

import numpy as np


InferFn = Callable[[np.ndarray], np.ndarray]


class CallableRequest:
    """Per-call request around a plain `infer_fn(blob) -> output`."""

    def __init__(self, infer_fn: InferFn):
        self._infer_fn = infer_fn

    def infer(self, blob: np.ndarray) -> np.ndarray:
        return np.asarray(self._infer_fn(blob))


class CallableBackend:
    """
    Wraps an injected inference function. The function must be safe to call
    from several threads at once.
    """

    def __init__(self, infer_fn: InferFn):
        self.infer_fn = infer_fn

    def create_request(self) -> CallableRequest:
        return CallableRequest(self.infer_fn)


__all__ = ["InferFn", "CallableBackend", "CallableRequest"]
