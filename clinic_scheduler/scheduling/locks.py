from collections.abc import Hashable, Iterable
from contextlib import contextmanager
from threading import Lock


class KeyedLocks:
    """Process-local striped locks keyed by (doctor_id, date).

    Stripes are always taken in ascending index order so two callers holding
    overlapping key sets cannot deadlock.
    """

    def __init__(self, stripes: int = 64) -> None:
        self._locks = [Lock() for _ in range(stripes)]

    def _indexes(self, keys: Iterable[Hashable]) -> list[int]:
        return sorted({hash(key) % len(self._locks) for key in keys})

    @contextmanager
    def hold(self, keys: Iterable[Hashable]):
        acquired: list[int] = []
        try:
            for index in self._indexes(keys):
                self._locks[index].acquire()
                acquired.append(index)
            yield
        finally:
            for index in reversed(acquired):
                self._locks[index].release()
