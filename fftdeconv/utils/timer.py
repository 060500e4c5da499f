"""Elapsed-time bookkeeping."""

import time

__all__ = ["Timer"]


class Timer:
    """Accumulating wall-clock timer.

    The timer can be started and stopped many times; the elapsed time is
    the sum over all start/stop intervals until :meth:`reset` is called.
    It can also be used as a context manager:

        >>> timer = Timer()
        >>> with timer:
        ...     run_fft()
        >>> timer.elapsed
    """

    def __init__(self):
        self._total = 0.0
        self._start = None

    @property
    def running(self) -> bool:
        return self._start is not None

    def start(self) -> None:
        if self._start is None:
            self._start = time.perf_counter()

    def stop(self) -> None:
        if self._start is not None:
            self._total += time.perf_counter() - self._start
            self._start = None

    def reset(self) -> None:
        """Clear the accumulated time (a running timer keeps running)."""
        self._total = 0.0
        if self._start is not None:
            self._start = time.perf_counter()

    @property
    def elapsed(self) -> float:
        """Accumulated time in seconds, including the current interval."""
        if self._start is None:
            return self._total
        return self._total + (time.perf_counter() - self._start)

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.stop()
        return False
