from __future__ import annotations

import threading
from typing import Optional

from sessionguard.config import Settings, get_settings, reset_settings_cache
from sessionguard.logging import get_logger
from sessionguard.service.engine import SecurityEngine

logger = get_logger(__name__)


class Runtime:
    """Holds the engine instance shared by the FastAPI app's workers."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.engine = SecurityEngine.from_settings(self.settings)
        logger.info(
            "runtime_initialized",
            environment=self.settings.environment.value,
            test_mode=self.settings.test_mode,
            max_concurrent_sessions=self.settings.max_concurrent_sessions,
        )


_runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        with _runtime_lock:
            if _runtime is None:
                _runtime = Runtime()
    return _runtime


def reset_runtime_for_tests() -> None:
    """Drop the shared runtime and cached settings so each test starts clean."""

    global _runtime
    with _runtime_lock:
        _runtime = None
    reset_settings_cache()
