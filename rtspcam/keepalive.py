"""Periodic keepalive trigger for an RTSP session."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

log = logging.getLogger("rtspcam.keepalive")

DEFAULT_INTERVAL = 5.0

class KeepaliveScheduler:
    """Calls *callback* every *interval* seconds until stopped.

    The callback only needs to be cheap; the session uses it to post an
    event to its queue rather than sending anything itself.
    """

    def __init__(self, callback: Callable[[], None], interval: float = DEFAULT_INTERVAL):
        self.callback = callback
        self.interval = float(interval)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())
        log.debug('Keepalive started (every %.1fs)', self.interval)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            log.debug('Keepalive stopped')

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.callback()
            except Exception:
                log.exception('keepalive callback failed')
