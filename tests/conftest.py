import asyncio
import inspect
import os
import sys
from pathlib import Path

# Seed configuration before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("AUTH_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("QUIZ_API_BASE", "https://quiz.test/api/quiz/")
os.environ.setdefault("QUIZ_API_AUTH", "dGVzdDp0ZXN0")
# Empty REDIS_URL selects the in-memory cache under TEST_MODE
os.environ.setdefault("REDIS_URL", "")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from curvaqz.service.runtime import reset_runtime_for_tests  # noqa: E402


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
