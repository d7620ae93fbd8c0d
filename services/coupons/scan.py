# services/coupons/scan.py
from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

_NON_DIGIT_RE = re.compile(r"\D")


def sanitize_scanned_code(payload: str | None, length: int = 6) -> str:
    """Keep only digits from a decoded QR payload, cut to `length`."""
    return _NON_DIGIT_RE.sub("", str(payload or ""))[:length]


class FrameSource(Protocol):
    def read(self) -> Optional[Tuple[bytes, int, int]]:
        """Latest (pixels, width, height), or None if no frame is ready yet."""

    def release(self) -> None:
        ...


Decoder = Callable[[bytes, int, int], Optional[str]]


class ScanSession:
    """
    Cooperative scan loop over a camera-like frame source.

    start() launches the loop as its own task; it yields between frames so
    other work keeps running. close() cancels it and always releases the
    frame source.
    """

    def __init__(self, frame_source: FrameSource, decoder: Decoder,
                 length: int = 6, interval: float = 1 / 30):
        self.frame_source = frame_source
        self.decoder = decoder
        self.length = length
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._released = False

    async def _loop(self) -> str:
        while True:
            frame = self.frame_source.read()
            if frame is not None:
                pixels, width, height = frame
                text = self.decoder(pixels, width, height)
                if text:
                    code = sanitize_scanned_code(text, self.length)
                    logger.debug(f"Decoded {text!r} -> {code!r}")
                    return code
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._loop())
            self._task.add_done_callback(lambda _t: self._release())
        return self._task

    async def result(self) -> str:
        """Wait for the first decoded code."""
        return await self.start()

    def _release(self):
        if not self._released:
            self._released = True
            self.frame_source.release()

    async def close(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._release()
