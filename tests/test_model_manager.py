import asyncio
import threading
import time

import pytest

from vhp.exceptions import ModelLoadError
from vhp.services.model_manager import ModelManager


class _CountingLoader:
    def __init__(self, delay: float = 0.0) -> None:
        self.calls = 0
        self._delay = delay
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            self.calls += 1
        time.sleep(self._delay)
        return object()


class TestModelManager:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_load(self):
        manager = ModelManager()
        loader = _CountingLoader(delay=0.05)
        manager.register_loader("face", loader)

        handles = await asyncio.gather(*(manager.ensure_loaded("face") for _ in range(5)))

        assert loader.calls == 1
        assert all(h is handles[0] for h in handles)
        assert manager.is_loaded("face")

    @pytest.mark.asyncio
    async def test_unregistered_model(self):
        manager = ModelManager()

        with pytest.raises(ModelLoadError):
            await manager.ensure_loaded("missing")

    @pytest.mark.asyncio
    async def test_loader_error_wrapped(self):
        manager = ModelManager()

        def broken():
            raise OSError("weights corrupted")

        manager.register_loader("face", broken)

        with pytest.raises(ModelLoadError, match="weights corrupted"):
            await manager.ensure_loaded("face")
        assert not manager.is_loaded("face")

    @pytest.mark.asyncio
    async def test_preload_tolerates_failures(self):
        manager = ModelManager()

        def broken():
            raise OSError("boom")

        manager.register_loader("face", broken)
        manager.register_loader("person", _CountingLoader())

        await manager.preload()

        assert manager.loaded_models == ["person"]

    @pytest.mark.asyncio
    async def test_get_requires_loaded_model(self):
        manager = ModelManager()
        manager.register_loader("person", _CountingLoader())

        with pytest.raises(ModelLoadError):
            manager.get("person")
        handle = await manager.ensure_loaded("person")
        assert manager.get("person") is handle

    @pytest.mark.asyncio
    async def test_reload_and_dispose(self):
        manager = ModelManager()
        loader = _CountingLoader()
        unloaded = []
        manager.register_loader("person", loader, unloader=unloaded.append)

        first = await manager.ensure_loaded("person")
        second = await manager.reload("person")

        assert loader.calls == 2
        assert second is not first
        assert unloaded == [first]

        await manager.dispose()
        assert manager.loaded_models == []
        assert unloaded == [first, second]
