import time
from contextlib import contextmanager


def now() -> float:
    return time.perf_counter()


def elapsed_since(start: float) -> float:
    return max(0.0, time.perf_counter() - start)


@contextmanager
def timer():
    t0 = now()
    yield lambda: elapsed_since(t0)
