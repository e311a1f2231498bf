import sys
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure repository root is on sys.path so `import xrmpub...` works locally
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolated_config_dir(tmp_path, monkeypatch):
    """Keep config.json and token files out of the real home directory."""
    config_dir = tmp_path / "xrmpub-home"
    monkeypatch.setenv("XRMPUB_CONFIG_DIR", str(config_dir))
    yield config_dir


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data: Any = None, text: str = "",
                 headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self._json = json_data
        self.headers = headers or {}
        if json_data is not None and not text:
            import json

            text = json.dumps(json_data)
        self.text = text
        self.content = text.encode("utf-8")

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeSession:
    """Scripted stand-in for requests.Session.

    Each call pops the next entry of ``responses``; an exception instance is
    raised instead of returned.
    """

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def _next(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def request(self, method, url, **kwargs):
        return self._next(method, url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)


class ImmediateExecutor:
    """Runs submitted work inline so message order is deterministic."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        fut: Future = Future()
        try:
            fut.set_result(fn(*args, **kwargs))
        except Exception as exc:
            fut.set_exception(exc)
        return fut

    def shutdown(self, wait=True, cancel_futures=False):
        pass


class DeferredExecutor(ImmediateExecutor):
    """Holds submitted work until ``run_all`` is called."""

    def __init__(self):
        super().__init__()
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        self.pending.append((fn, args, kwargs))
        return Future()

    def run_all(self):
        while self.pending:
            fn, args, kwargs = self.pending.pop(0)
            fn(*args, **kwargs)


class FakeObserver:
    def __init__(self):
        self.scheduled: Dict[str, Any] = {}
        self.unscheduled: List[str] = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        assert recursive is False
        watch = ("watch", path)
        self.scheduled[path] = handler
        return watch

    def unschedule(self, watch):
        path = watch[1]
        if path not in self.scheduled:
            raise KeyError(path)
        del self.scheduled[path]
        self.unscheduled.append(path)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture
def fake_session_factory():
    return FakeSession


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def deferred_executor():
    return DeferredExecutor()


@pytest.fixture
def fake_observer():
    return FakeObserver()


@pytest.fixture
def fake_clock():
    return FakeClock()
