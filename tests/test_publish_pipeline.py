"""Publish pipeline: version bump, read retries, upload order and persistence."""
import base64

import pytest

from xrmpub.config_store import ConfigStore
from xrmpub.errors import (
    NotBoundError,
    PersistFailedError,
    ReadFailedError,
    RemoteAPIError,
)
from xrmpub.models import Binding
from xrmpub.publish import PublishPipeline, increment_version

pytestmark = pytest.mark.unit


class FakeClient:
    def __init__(self, fail_publish=None):
        self.calls = []
        self.fail_publish = fail_publish

    def update_web_resource_content(self, resource_id, content):
        self.calls.append(("update", resource_id, content))

    def publish_web_resource(self, resource_id):
        self.calls.append(("publish", resource_id))
        if self.fail_publish is not None:
            raise self.fail_publish


@pytest.mark.parametrize(
    "version, expected",
    [
        ("1.0.12", "1.0.13"),
        ("1.0.0", "1.0.1"),
        ("2.5.9", "2.5.10"),
        ("malformed", "1.0.1"),
        ("1.2", "1.0.1"),
        ("1.2.3.4", "1.0.1"),
        ("1.a.3", "1.0.1"),
        ("", "1.0.1"),
    ],
)
def test_increment_version(version, expected):
    assert increment_version(version) == expected


@pytest.fixture
def bound(tmp_path):
    store = ConfigStore.load(tmp_path / "config.json")
    store.add_environment("Dev", "https://dev.crm.dynamics.com")
    source = tmp_path / "a.js"
    source.write_bytes(b"console.log('hi');\n")
    store.add_or_update_binding(Binding("Dev", str(source), "new_/a.js", "R1"))
    return store, source


def test_publish_uploads_publishes_and_bumps(bound):
    store, source = bound
    client = FakeClient()
    pipeline = PublishPipeline(store, client, sleep=lambda s: None)

    binding = pipeline.publish("Dev", "R1")

    encoded = base64.b64encode(source.read_bytes()).decode("ascii")
    assert client.calls == [("update", "R1", encoded), ("publish", "R1")]
    assert binding.last_known_version == "1.0.1"
    assert ConfigStore.load(store.path).get_binding("Dev", "R1").last_known_version == "1.0.1"


def test_upload_does_not_write_store(bound):
    store, _ = bound
    pipeline = PublishPipeline(store, FakeClient())
    outcome = pipeline.upload(store.get_binding("Dev", "R1"))
    assert outcome.new_version == "1.0.1"
    assert store.get_binding("Dev", "R1").last_known_version == "1.0.0"


def test_prepare_unbound(bound):
    store, _ = bound
    with pytest.raises(NotBoundError) as excinfo:
        PublishPipeline(store, FakeClient()).prepare("Dev", "R404")
    assert excinfo.value.resource_id == "R404"


def test_read_retries_until_file_reappears(bound, monkeypatch):
    store, source = bound
    expected = source.read_bytes()
    real_open = open
    attempts = []

    def flaky_open(path, mode="r", *args, **kwargs):
        if str(path) == str(source):
            attempts.append(path)
            if len(attempts) < 3:
                raise FileNotFoundError(path)
        return real_open(path, mode, *args, **kwargs)

    monkeypatch.setattr("builtins.open", flaky_open)
    sleeps = []
    pipeline = PublishPipeline(store, FakeClient(), sleep=sleeps.append)

    assert pipeline.read_content(store.get_binding("Dev", "R1")) == expected
    assert len(attempts) == 3
    assert sleeps == [0.05, 0.05]


def test_read_gives_up_after_five_attempts(bound):
    store, source = bound
    source.unlink()
    sleeps = []
    client = FakeClient()
    pipeline = PublishPipeline(store, client, sleep=sleeps.append)

    with pytest.raises(ReadFailedError) as excinfo:
        pipeline.publish("Dev", "R1")

    assert len(sleeps) == 4
    assert excinfo.value.local_path == str(source)
    assert excinfo.value.resource_id == "R1"
    assert client.calls == []
    assert store.get_binding("Dev", "R1").last_known_version == "1.0.0"


def test_remote_errors_propagate_unchanged(bound):
    store, _ = bound
    pipeline = PublishPipeline(store, FakeClient(fail_publish=RemoteAPIError(500, "nope")))
    with pytest.raises(RemoteAPIError):
        pipeline.publish("Dev", "R1")
    assert store.get_binding("Dev", "R1").last_known_version == "1.0.0"


def test_commit_failure_is_persist_failed(bound, monkeypatch):
    store, source = bound
    pipeline = PublishPipeline(store, FakeClient())
    outcome = pipeline.upload(store.get_binding("Dev", "R1"))

    def fail(*a, **k):
        raise OSError("read-only filesystem")

    monkeypatch.setattr(store, "update_binding_version", fail)
    with pytest.raises(PersistFailedError) as excinfo:
        pipeline.commit(outcome)
    assert excinfo.value.local_path == str(source)
    assert isinstance(excinfo.value.cause, OSError)


def test_upload_with_explicit_client(bound):
    store, _ = bound
    mine = FakeClient()
    PublishPipeline(store).upload(store.get_binding("Dev", "R1"), mine)
    assert [c[0] for c in mine.calls] == ["update", "publish"]
