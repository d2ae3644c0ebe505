"""
Miscellaneous utility classes and functions for TxWatch.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Optional, Union


def class_logger(path: str, classname: str) -> logging.Logger:
    """Return a hierarchical logger for a class."""
    return logging.getLogger(path).getChild(classname)


class ReadWriteLock:
    """
    A readers-writer lock.

    Any number of readers may hold the lock together; a writer excludes
    all readers and other writers.  Waiting writers take priority over new
    readers so a steady stream of reads cannot starve the indexer.

    The lock is not re-entrant.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


def hex_to_int(value: Optional[Union[str, int]]) -> Optional[int]:
    """Decode a JSON-RPC hex quantity such as '0x1b4'.  None passes through."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


def int_to_hex(value: int) -> str:
    """Encode an int as a JSON-RPC hex quantity."""
    if value < 0:
        raise ValueError(f'negative quantity {value}')
    return hex(value)
