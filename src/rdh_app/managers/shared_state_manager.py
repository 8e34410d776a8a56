from __future__ import annotations


import logging
import threading
import concurrent.futures
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional


logger = logging.getLogger(__name__)


class SharedStateManager:
    """
    Coordinates access to case data across threads.

    Reloads of one case run one at a time and never overlap with reads of the
    computed results; reads may run concurrently with each other.
    """

    def __init__(self) -> None:
        # Guards the per-case lock registry
        self.thread_lock = threading.Lock()
        self._case_locks: Dict[str, threading.Lock] = {}

        self._state_condition = threading.Condition()
        self._active_readers = 0
        self._reload_active = False

        # Signal program shutdown. Set will refuse new actions.
        self.shutdown_event = threading.Event()

        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

    def _get_case_lock(self, case_key: str) -> threading.Lock:
        with self.thread_lock:
            return self._case_locks.setdefault(case_key, threading.Lock())

    @contextmanager
    def reload_guard(self, case_key: str) -> Iterator[None]:
        """Hold exclusive access to the case data for the duration of a reload."""
        case_lock = self._get_case_lock(case_key)
        with case_lock:
            with self._state_condition:
                self._state_condition.wait_for(lambda: self._active_readers == 0 and not self._reload_active)
                self._reload_active = True
            try:
                yield
            finally:
                with self._state_condition:
                    self._reload_active = False
                    self._state_condition.notify_all()

    @contextmanager
    def read_guard(self) -> Iterator[None]:
        """Shared access to computed results; waits while a reload is running."""
        with self._state_condition:
            self._state_condition.wait_for(lambda: not self._reload_active)
            self._active_readers += 1
        try:
            yield
        finally:
            with self._state_condition:
                self._active_readers -= 1
                self._state_condition.notify_all()

    @property
    def is_reload_active(self) -> bool:
        with self._state_condition:
            return self._reload_active

    def submit_action(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[concurrent.futures.Future]:
        """Run an action on the background worker; None once shutdown has started."""
        if self.shutdown_event.is_set():
            logger.info(f"Skipped '{getattr(func, '__name__', repr(func))}' - shutting down")
            return None
        with self.thread_lock:
            if self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="rdh_action")
            return self._executor.submit(func, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        """Refuse new actions and stop the background worker."""
        self.shutdown_event.set()
        with self.thread_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.debug("Background worker stopped.")
