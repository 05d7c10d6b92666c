import asyncio
import inspect
import os
import sys
from datetime import datetime
from pathlib import Path

# Settings are read from the environment on first use; pin them before any imports.
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("SESSIONGUARD_ENV", "test")
os.environ.setdefault("CSRF_SECRET", "test-csrf-secret-for-testing-only-do-not-use-in-production")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("TRUSTED_PROXIES", "127.0.0.1")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from sessionguard.config import Settings  # noqa: E402
from sessionguard.service.context import RequestContext  # noqa: E402
from sessionguard.service.engine import SecurityEngine  # noqa: E402
from sessionguard.service.runtime import reset_runtime_for_tests  # noqa: E402

TEST_SECRET = os.environ["CSRF_SECRET"]

# Local noon, so business-hours checks see an ordinary access time.
NOON = datetime(2024, 3, 5, 12, 0, 0).timestamp()

BROWSER_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = NOON):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(test_mode=True, csrf_secret=TEST_SECRET)


@pytest.fixture
def engine(settings, clock):
    return SecurityEngine.from_settings(settings, clock=clock)


@pytest.fixture
def browser_context():
    return RequestContext(ip_address="203.0.113.10", device_signature=BROWSER_UA)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
