import asyncio
import threading
import time

import pytest

from vhp.exceptions import MediaValidationError
from vhp.services import media
from vhp.services.media import MediaBlob, OpenCVVideoSource, open_video_source

VIDEO = MediaBlob(b"\x1a\x45\xdf\xa3" + b"\x00" * 4096, "video/webm")


def fake_capture(released: list, *, delay: float = 0.0, opened: bool = True):
    """A stand-in for ``cv2.VideoCapture`` that records releases."""

    class _Capture:
        def __init__(self, path: str) -> None:
            time.sleep(delay)
            self.path = path

        def isOpened(self) -> bool:
            return opened

        def get(self, prop) -> float:
            return 0.0

        def set(self, prop, value) -> bool:
            return True

        def release(self) -> None:
            released.append(self.path)

    return _Capture


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        await asyncio.sleep(0.02)


class TestOpenVideoSource:
    @pytest.mark.asyncio
    async def test_opens_and_close_removes_temp_file(self, monkeypatch, tmp_path):
        released = []
        monkeypatch.setattr(media.cv2, "VideoCapture", fake_capture(released))

        source = await open_video_source(VIDEO, tmp_dir=tmp_path)
        temp_files = list(tmp_path.iterdir())
        source.close()

        assert [p.suffix for p in temp_files] == [".webm"]
        assert released == [str(temp_files[0])]
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_unopenable_video_leaves_no_temp_file(self, monkeypatch, tmp_path):
        released = []
        monkeypatch.setattr(media.cv2, "VideoCapture", fake_capture(released, opened=False))

        with pytest.raises(MediaValidationError, match="Failed to load video"):
            await open_video_source(VIDEO, tmp_dir=tmp_path)

        assert len(released) == 1
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_source_opened_after_timeout_is_closed(self, monkeypatch, tmp_path):
        released = []
        monkeypatch.setattr(media.cv2, "VideoCapture", fake_capture(released, delay=0.3))

        with pytest.raises(MediaValidationError, match="Video loading timeout"):
            await open_video_source(VIDEO, timeout_s=0.05, tmp_dir=tmp_path)
        await wait_until(lambda: bool(released))

        assert len(released) == 1
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_cancelled_open_closes_source(self, monkeypatch, tmp_path):
        released = []
        monkeypatch.setattr(media.cv2, "VideoCapture", fake_capture(released, delay=0.2))

        opening = asyncio.create_task(open_video_source(VIDEO, tmp_dir=tmp_path))
        await asyncio.sleep(0.05)
        opening.cancel()
        with pytest.raises(asyncio.CancelledError):
            await opening
        await wait_until(lambda: bool(released))

        assert len(released) == 1
        assert list(tmp_path.iterdir()) == []


class TestOpenCVVideoSource:
    def test_close_waits_for_pending_seek(self, monkeypatch, tmp_path):
        released = []
        monkeypatch.setattr(media.cv2, "VideoCapture", fake_capture(released))
        source = OpenCVVideoSource.from_blob(VIDEO, tmp_dir=tmp_path)

        # a seek still running in a worker thread holds the lock
        source._lock.acquire()
        closer = threading.Thread(target=source.close)
        closer.start()
        time.sleep(0.05)
        assert released == []

        source._lock.release()
        closer.join(timeout=1.0)
        assert len(released) == 1
        assert list(tmp_path.iterdir()) == []
