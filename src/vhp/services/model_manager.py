"""Detector model lifecycle manager.

Holds the process-wide handles of the face and person detectors. Models
are loaded lazily on first use (or eagerly via ``preload`` at startup),
exactly once, and shared read-only by every verification run afterwards.
"""

import asyncio
import gc
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from vhp.exceptions import ModelLoadError

logger = logging.getLogger(__name__)


@dataclass
class _ModelSlot:
    load: Callable[[], Any]
    release: Callable[[Any], None] | None = None
    handle: Any = None


class ModelManager:
    """Load-once registry of detector models, safe for concurrent runs."""

    def __init__(self) -> None:
        self._init_lock = asyncio.Lock()
        self._slots: dict[str, _ModelSlot] = {}

    def register_loader(
        self,
        model_type: str,
        loader: Callable[[], Any],
        unloader: Callable[[Any], None] | None = None,
    ) -> None:
        """Register how to build (and optionally release) *model_type*."""
        self._slots[model_type] = _ModelSlot(load=loader, release=unloader)

    def is_loaded(self, model_type: str) -> bool:
        slot = self._slots.get(model_type)
        return slot is not None and slot.handle is not None

    def get(self, model_type: str) -> Any:
        """Return an already loaded handle; raises if it was never loaded."""
        if not self.is_loaded(model_type):
            raise ModelLoadError(f"Model '{model_type}' is not loaded")
        return self._slots[model_type].handle

    @property
    def loaded_models(self) -> list[str]:
        return sorted(name for name in self._slots if self.is_loaded(name))

    async def ensure_loaded(self, model_type: str) -> Any:
        """Return the model handle, loading it on first call.

        Concurrent callers share a single load; later calls are lock-free.
        """
        if self.is_loaded(model_type):
            return self._slots[model_type].handle
        async with self._init_lock:
            # another caller may have finished the load while we waited
            if not self.is_loaded(model_type):
                await self._load(model_type)
            return self._slots[model_type].handle

    async def preload(self) -> None:
        """Load every registered model; a failing model is logged and skipped."""
        for model_type in list(self._slots):
            try:
                await self.ensure_loaded(model_type)
            except ModelLoadError as e:
                logger.warning("Preload of '%s' failed: %s", model_type, e)

    async def reload(self, model_type: str) -> Any:
        """Replace a loaded model with a fresh instance (e.g. new weights)."""
        async with self._init_lock:
            await self._release(model_type)
            await self._load(model_type)
            return self._slots[model_type].handle

    async def dispose(self) -> None:
        async with self._init_lock:
            for model_type in self.loaded_models:
                await self._release(model_type)

    # -- internal --------------------------------------------------------

    async def _load(self, model_type: str) -> None:
        slot = self._slots.get(model_type)
        if slot is None:
            raise ModelLoadError(f"No loader registered for model type '{model_type}'")

        logger.info("Loading detector model '%s' ...", model_type)
        try:
            handle = await asyncio.to_thread(slot.load)
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load model '{model_type}': {e}") from e
        slot.handle = handle
        logger.info("Detector model '%s' ready.", model_type)

    async def _release(self, model_type: str) -> None:
        slot = self._slots.get(model_type)
        if slot is None or slot.handle is None:
            return

        handle, slot.handle = slot.handle, None
        if slot.release:
            await asyncio.to_thread(slot.release, handle)
        del handle

        try:
            import torch

            if torch.cuda.is_available():
                torch.cuda.empty_cache()
        except ImportError:
            pass
        gc.collect()
        logger.info("Detector model '%s' released.", model_type)
