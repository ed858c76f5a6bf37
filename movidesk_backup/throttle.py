import logging
import time
from typing import Callable

log = logging.getLogger(__name__)


class FixedWindowThrottle:
    """
    Blocks for `window` seconds once `limit` fetches have been recorded.

    Fixed window, no smoothing: the counter only resets after the full pause.
    One instance per run; never share it between concurrent workers.
    """

    def __init__(self, limit: int = 10, window: float = 60.0, sleep: Callable[[float], None] = time.sleep):
        assert limit > 0, "limit must be positive"
        self.limit = limit
        self.window = window
        self.count = 0
        self.pauses = 0
        self._sleep = sleep

    def wait(self) -> None:
        if self.count < self.limit:
            return
        log.info("Request limit reached (%d). Waiting %.0fs…", self.limit, self.window)
        self._sleep(self.window)
        self.count = 0
        self.pauses += 1

    def record(self) -> None:
        self.count += 1
