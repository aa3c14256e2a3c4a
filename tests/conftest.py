import asyncio
import inspect
import os
import shutil
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="chirpy_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("TOKEN_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("POLKA_KEY", "f271c81ff7084ee5b99a5091b42d486e")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from chirpy.service.runtime import reset_runtime_for_tests  # noqa: E402


def _clear_memory_state() -> None:
    shutil.rmtree(Path(os.environ["SHARED_FS_ROOT"]) / "state", ignore_errors=True)


@pytest.fixture(autouse=True)
def reset_runtime_state():
    _clear_memory_state()
    reset_runtime_for_tests()
    yield
    _clear_memory_state()
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
