"""Binding store: environment-scoped CRUD over the configuration document.

The store owns the on-disk ``config.json``. Several processes may share it
(a long-running ``watch`` next to one-shot CLI commands), so every mutation
is a read-modify-write under an advisory lock: the latest document is read
from disk, the change is applied to that copy, the copy is written atomically
(temp file + rename) and only then replaces the in-memory document. A failed
validation or a failed write leaves the in-memory document unchanged.
"""

from __future__ import annotations

import json
import os
import re
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, TypeVar

from xrmpub.errors import (
    BindingNotFoundError,
    DuplicateNameError,
    EmptyNameError,
    EnvironmentNotFoundError,
    InvalidUrlError,
)
from xrmpub.logger import get_logger
from xrmpub.models import Binding, ConfigDocument, Environment
from xrmpub.settings import get_config_dir

# Cross-process file locking (POSIX fcntl); no-op where unavailable
try:
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore

logger = get_logger(__name__)

T = TypeVar("T")

ENVIRONMENT_URL_RE = re.compile(r"^https://[A-Za-z0-9-]+\.crm[0-9]*\.dynamics\.com$")


def validate_environment_url(url: str) -> None:
    """Raise InvalidUrlError unless ``url`` is a Dynamics 365 organization URL."""
    if not url.startswith("https://"):
        raise InvalidUrlError("URL must start with https://")
    if not ENVIRONMENT_URL_RE.match(url):
        raise InvalidUrlError(
            "URL must be a valid Dynamics 365 URL (e.g., https://myorg.crm.dynamics.com)"
        )


def default_config_path() -> Path:
    return get_config_dir() / "config.json"


def _atomic_write_json(path: Path, payload: dict) -> None:
    """Write JSON next to ``path`` and rename over it, owner-only permissions."""
    path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    temp_path = path.with_suffix(f".tmp.{uuid.uuid4().hex[:8]}")
    try:
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.write("\n")
        temp_path.replace(path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


@contextmanager
def _cross_process_lock(lock_path: Path) -> Iterator[None]:
    """Advisory exclusive lock on a companion ``.lock`` file; pairs with atomic rename writes."""
    lock_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
    fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o600)
    try:
        if fcntl is not None:
            fcntl.flock(fd, fcntl.LOCK_EX)
        yield
    finally:
        if fcntl is not None:
            fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def _read_document(path: Path) -> Optional[ConfigDocument]:
    """Parse the document at ``path``; None when missing or unreadable."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning(f"[config] Could not read {path}: {exc}")
        return None
    return ConfigDocument.from_dict(raw)


def _find_environment(doc: ConfigDocument, name: str) -> Optional[Environment]:
    for env in doc.environments:
        if env.name == name:
            return env
    return None


def _find_binding(doc: ConfigDocument, environment: str, resource_id: str) -> Optional[Binding]:
    for b in doc.bindings:
        if b.environment == environment and b.web_resource_id == resource_id:
            return b
    return None


def _require_environment(doc: ConfigDocument, name: str) -> Environment:
    env = _find_environment(doc, name)
    if env is None:
        raise EnvironmentNotFoundError(f"environment {name!r} not found")
    return env


def _require_binding(doc: ConfigDocument, environment: str, resource_id: str) -> Binding:
    binding = _find_binding(doc, environment, resource_id)
    if binding is None:
        raise BindingNotFoundError(f"no binding for {resource_id} in {environment!r}")
    return binding


class ConfigStore:
    """Owner of the configuration document and its persistence."""

    def __init__(self, path: Optional[Path] = None, document: Optional[ConfigDocument] = None):
        self.path = Path(path) if path is not None else default_config_path()
        self.document = document if document is not None else ConfigDocument()
        self._lock = threading.RLock()

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ConfigStore":
        """Load the document, falling back to defaults when missing or malformed."""
        store = cls(path)
        document = _read_document(store.path)
        if document is not None:
            store.document = document
        return store

    def reload(self) -> None:
        """Pick up changes written by other processes."""
        with self._lock:
            document = _read_document(self.path)
            if document is not None:
                self.document = document

    def save(self) -> None:
        with self._lock, _cross_process_lock(self.lock_path):
            _atomic_write_json(self.path, self.document.to_dict())

    def _commit(self, mutate: Callable[[ConfigDocument], T]) -> T:
        with self._lock, _cross_process_lock(self.lock_path):
            draft = _read_document(self.path) or self.document.clone()
            result = mutate(draft)
            _atomic_write_json(self.path, draft.to_dict())
            self.document = draft
            return result

    # ------------------------------------------------------------------
    # Environments
    # ------------------------------------------------------------------
    @property
    def current_environment(self) -> str:
        return self.document.current_environment

    @property
    def environments(self) -> List[Environment]:
        return list(self.document.environments)

    @property
    def publisher_prefix(self) -> str:
        return self.document.publisher_prefix

    def get_environment(self, name: str) -> Optional[Environment]:
        return _find_environment(self.document, name)

    def add_environment(self, name: str, url: str) -> Environment:
        name = name.strip()
        url = url.strip()
        if not name:
            raise EmptyNameError("environment name cannot be empty")
        validate_environment_url(url)

        def mutate(doc: ConfigDocument) -> Environment:
            if _find_environment(doc, name) is not None:
                raise DuplicateNameError(f"environment {name!r} already exists")
            env = Environment(name=name, url=url)
            doc.environments.append(env)
            return env

        env = self._commit(mutate)
        logger.info(f"[config] Added environment {name} ({url})")
        return env

    def update_environment(self, old_name: str, new_name: str, url: str) -> Environment:
        new_name = new_name.strip()
        url = url.strip()
        if not new_name:
            raise EmptyNameError("environment name cannot be empty")
        validate_environment_url(url)

        def mutate(doc: ConfigDocument) -> Environment:
            env = _require_environment(doc, old_name)
            if old_name != new_name and _find_environment(doc, new_name) is not None:
                raise DuplicateNameError(f"environment {new_name!r} already exists")
            env.name = new_name
            env.url = url
            if old_name != new_name:
                for b in doc.bindings:
                    if b.environment == old_name:
                        b.environment = new_name
                if doc.current_environment == old_name:
                    doc.current_environment = new_name
            return env

        env = self._commit(mutate)
        logger.info(f"[config] Updated environment {old_name} -> {new_name} ({url})")
        return env

    def delete_environment(self, name: str) -> int:
        """Remove an environment with its bindings; returns the number of bindings removed."""

        def mutate(doc: ConfigDocument) -> int:
            _require_environment(doc, name)
            before = len(doc.bindings)
            doc.environments = [e for e in doc.environments if e.name != name]
            doc.bindings = [b for b in doc.bindings if b.environment != name]
            if doc.current_environment == name:
                doc.current_environment = ""
            return before - len(doc.bindings)

        removed = self._commit(mutate)
        logger.info(f"[config] Deleted environment {name} and {removed} binding(s)")
        return removed

    def set_current_environment(self, name: str) -> None:
        def mutate(doc: ConfigDocument) -> None:
            if name:
                _require_environment(doc, name)
            doc.current_environment = name

        self._commit(mutate)

    def set_publisher_prefix(self, prefix: str) -> None:
        prefix = prefix.strip()

        def mutate(doc: ConfigDocument) -> None:
            doc.publisher_prefix = prefix

        self._commit(mutate)

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------
    def get_binding(self, environment: str, resource_id: str) -> Optional[Binding]:
        return _find_binding(self.document, environment, resource_id)

    def bindings_for_environment(self, environment: str) -> List[Binding]:
        return [b for b in self.document.bindings if b.environment == environment]

    def add_or_update_binding(self, binding: Binding) -> Binding:
        """Upsert by (environment, web_resource_id)."""

        def mutate(doc: ConfigDocument) -> Binding:
            _require_environment(doc, binding.environment)
            for i, b in enumerate(doc.bindings):
                if b.key == binding.key:
                    doc.bindings[i] = binding
                    return binding
            doc.bindings.append(binding)
            return binding

        return self._commit(mutate)

    def delete_binding(self, environment: str, resource_id: str) -> Binding:
        def mutate(doc: ConfigDocument) -> Binding:
            existing = _require_binding(doc, environment, resource_id)
            doc.bindings = [b for b in doc.bindings if b is not existing]
            return existing

        return self._commit(mutate)

    def _update_binding(self, environment: str, resource_id: str, **changes) -> Binding:
        def mutate(doc: ConfigDocument) -> Binding:
            binding = _require_binding(doc, environment, resource_id)
            for attr, value in changes.items():
                setattr(binding, attr, value)
            return binding

        return self._commit(mutate)

    def set_auto_publish(self, environment: str, resource_id: str, enabled: bool) -> Binding:
        return self._update_binding(environment, resource_id, auto_publish=bool(enabled))

    def update_binding_version(self, environment: str, resource_id: str, version: str) -> Binding:
        return self._update_binding(environment, resource_id, last_known_version=version)
