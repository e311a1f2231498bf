"""Single-threaded application core.

The orchestrator owns the configuration store, the watch set, the screen
state and the in-progress publish markers. Slow work (device code polling,
HTTP calls, file reads) is dispatched to a thread pool; each task ends by
putting a message on the inbox, and ``run_once`` applies those messages on
the orchestrator's own thread. Nothing else mutates shared state.
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import requests

from xrmpub.auth import (
    TokenManager,
    TokenStore,
    begin_device_auth,
    poll_for_token,
    refresh_silently,
)
from xrmpub.client import RemoteClient
from xrmpub.config_store import ConfigStore
from xrmpub.create import CreateReport, ResourceCreator
from xrmpub.errors import (
    AuthError,
    BindingNotFoundError,
    ConfigError,
    EnvironmentNotFoundError,
    NotConnectedError,
    PublisherError,
    RefreshFailedError,
    UnauthorizedError,
    WatchError,
)
from xrmpub.logger import get_logger
from xrmpub.messages import (
    AddedToSolution,
    AuthChallengeIssued,
    AuthFailed,
    AuthSucceeded,
    FileChanged,
    Message,
    PublishFailed,
    PublishUploaded,
    ResourcesCreated,
    ResourcesLoaded,
    SolutionsLoaded,
    TaskFailed,
)
from xrmpub.models import Binding, Environment, Solution, Token, WebResource
from xrmpub.publish import PublishPipeline
from xrmpub.screens import (
    Authenticating,
    ConfirmDelete,
    EnvironmentSelect,
    ResourceList,
    Screen,
    SolutionPicker,
    Status,
)
from xrmpub.settings import INITIAL_BINDING_VERSION, MAX_WORKERS
from xrmpub.watch_core import WatchEngine
from xrmpub.watch_core.engine import normalize_path
from xrmpub.webresources import CreateFileInfo

logger = get_logger(__name__)

PublishKey = Tuple[str, str]


class Orchestrator:
    def __init__(
        self,
        store: ConfigStore,
        *,
        token_store: Optional[TokenStore] = None,
        inbox: Optional["queue.Queue[Message]"] = None,
        watch: Optional[WatchEngine] = None,
        executor: Optional[Executor] = None,
        session: Optional[requests.Session] = None,
        client_factory: Optional[Callable[[Environment, Token], Any]] = None,
        begin_auth: Callable[..., Any] = begin_device_auth,
        poll: Callable[..., Token] = poll_for_token,
        refresh: Callable[..., Token] = refresh_silently,
        browser_auth: Optional[Callable[[str], Token]] = None,
    ):
        self.store = store
        self.token_store = token_store or TokenStore()
        self.inbox: "queue.Queue[Message]" = inbox if inbox is not None else queue.Queue()
        self.watch = watch if watch is not None else WatchEngine(self.inbox)
        self.executor = executor or ThreadPoolExecutor(
            max_workers=MAX_WORKERS, thread_name_prefix="xrmpub-worker"
        )
        self.session = session
        self._client_factory = client_factory or self._default_client
        self._begin_auth = begin_auth
        self._poll = poll
        self._refresh = refresh
        # Interactive sign-in replacing the device code flow when set
        self._browser_auth = browser_auth

        self.screen: Screen = EnvironmentSelect()
        # Environment whose bindings make up the watch set; "" on EnvironmentSelect
        self.current_name = ""
        self.status = Status()
        self.environment: Optional[Environment] = None
        self.client: Any = None
        self.pipeline = PublishPipeline(store, None)
        self.resources: List[WebResource] = []
        self.solutions: List[Solution] = []
        self.last_create_report: Optional[CreateReport] = None

        self._publishing: Set[PublishKey] = set()
        self._republish: Set[PublishKey] = set()
        self._auth_generation = 0
        self._auth_cancel = threading.Event()

        self._handlers: Dict[type, Callable[[Any], None]] = {
            FileChanged: self._on_file_changed,
            AuthChallengeIssued: self._on_auth_challenge,
            AuthSucceeded: self._on_auth_succeeded,
            AuthFailed: self._on_auth_failed,
            ResourcesLoaded: self._on_resources_loaded,
            SolutionsLoaded: self._on_solutions_loaded,
            AddedToSolution: self._on_added_to_solution,
            PublishUploaded: self._on_publish_uploaded,
            PublishFailed: self._on_publish_failed,
            ResourcesCreated: self._on_resources_created,
            TaskFailed: self._on_task_failed,
        }

    def _default_client(self, environment: Environment, token: Token) -> RemoteClient:
        manager = TokenManager(environment, token, self.token_store, session=self.session)
        return RemoteClient(environment.url, manager, session=self.session)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def start(self) -> None:
        self.watch.start()

    def shutdown(self) -> None:
        self._cancel_auth()
        self.watch.stop()
        self.executor.shutdown(wait=False, cancel_futures=True)

    def handle(self, message: Message) -> None:
        handler = self._handlers.get(type(message))
        if handler is None:
            logger.warning(f"[orchestrator] Ignoring unknown message {type(message).__name__}")
            return
        try:
            handler(message)
        except (PublisherError, OSError) as exc:
            logger.error(f"[orchestrator] Handling {type(message).__name__} failed: {exc}")
            self._set_status(str(exc), is_error=True)

    def run_once(self, timeout: Optional[float] = None) -> Optional[Message]:
        try:
            message = self.inbox.get(timeout=timeout)
        except queue.Empty:
            return None
        self.handle(message)
        return message

    def drain(self) -> int:
        """Apply every message already queued without blocking."""
        count = 0
        while True:
            try:
                message = self.inbox.get_nowait()
            except queue.Empty:
                return count
            self.handle(message)
            count += 1

    def run(self, stop: threading.Event, poll_interval: float = 0.2) -> None:
        while not stop.is_set():
            self.run_once(timeout=poll_interval)

    def _dispatch(self, task: str, work: Callable[[], Message], environment: str,
                  resource_id: Optional[str] = None) -> None:
        def runner() -> None:
            try:
                message = work()
            except Exception as exc:
                logger.error(f"[orchestrator] Task {task} failed: {exc}", exc_info=True)
                message = TaskFailed(task, environment, exc, resource_id)
            self.inbox.put(message)

        self.executor.submit(runner)

    def _set_status(self, text: str, is_error: bool = False) -> None:
        self.status = Status(text, is_error)
        if is_error:
            logger.warning(f"[orchestrator] {text}")
        else:
            logger.info(f"[orchestrator] {text}")

    # ------------------------------------------------------------------
    # Environments
    # ------------------------------------------------------------------
    def add_environment(self, name: str, url: str) -> Environment:
        env = self.store.add_environment(name, url)
        self._set_status(f"Added environment {env.name}")
        return env

    def update_environment(self, old_name: str, new_name: str, url: str) -> Environment:
        # Also covers a sign-in still in progress, whose result carries the old name
        was_active = old_name == self.current_name
        env = self.store.update_environment(old_name, new_name, url)
        if old_name != env.name:
            token = self.token_store.load(old_name)
            if token is not None:
                self.token_store.save(env.name, token)
                self.token_store.delete(old_name)
        if was_active:
            self.select_environment(env.name)
        self._set_status(f"Updated environment {env.name}")
        return env

    def request_delete_environment(self, name: str) -> None:
        if self.store.get_environment(name) is None:
            raise EnvironmentNotFoundError(f"environment {name!r} not found")
        self.screen = ConfirmDelete(name)

    def confirm_delete_environment(self) -> int:
        if not isinstance(self.screen, ConfirmDelete):
            raise ConfigError("no environment deletion is pending")
        return self.delete_environment(self.screen.environment)

    def cancel_delete_environment(self) -> None:
        if isinstance(self.screen, ConfirmDelete):
            self.screen = EnvironmentSelect()

    def delete_environment(self, name: str) -> int:
        if self.store.get_environment(name) is None:
            raise EnvironmentNotFoundError(f"environment {name!r} not found")
        if name == self.current_name:
            self.leave_environment()
        removed = self.store.delete_environment(name)
        self.token_store.delete(name)
        self.screen = EnvironmentSelect()
        self._set_status(f"Deleted environment {name} ({removed} binding(s) removed)")
        return removed

    def set_publisher_prefix(self, prefix: str) -> None:
        self.store.set_publisher_prefix(prefix)

    def select_environment(self, name: str) -> None:
        """Make ``name`` current, swap the watch set over to it and sign in."""
        if self.store.get_environment(name) is None:
            raise EnvironmentNotFoundError(f"environment {name!r} not found")
        self._cancel_auth()
        self._disconnect()
        self.store.set_current_environment(name)
        self.current_name = name
        self._install_watch_set(name)
        self.authenticate()

    def leave_environment(self) -> None:
        self._cancel_auth()
        self._disconnect()
        self.watch.clear()
        self.current_name = ""
        if self.store.current_environment:
            self.store.set_current_environment("")
        self.screen = EnvironmentSelect()

    def _current_environment(self) -> Environment:
        name = self.current_name
        env = self.store.get_environment(name) if name else None
        if env is None:
            raise EnvironmentNotFoundError("no environment selected")
        return env

    def _install_watch_set(self, environment: str) -> None:
        # Clearing bumps the watch generation, so queued changes of the
        # previous environment are dropped when they reach the inbox
        self.watch.clear()
        for binding in self.store.bindings_for_environment(environment):
            if binding.auto_publish:
                self._watch_file(binding.local_path)

    def _watch_file(self, path: str) -> None:
        try:
            self.watch.add_file(path)
        except WatchError as exc:
            logger.warning(f"[orchestrator] {exc}")
            self._set_status(str(exc), is_error=True)

    def _sync_watch(self, path: str) -> None:
        """Track ``path`` iff some auto-publish binding of the current environment uses it."""
        target = normalize_path(path)
        env = self.current_name
        wanted = any(
            b.auto_publish and normalize_path(b.local_path) == target
            for b in self.store.bindings_for_environment(env)
        ) if env else False
        if wanted:
            if not self.watch.is_tracked(target):
                self._watch_file(target)
        else:
            self.watch.remove_file(target)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def authenticate(self, force_device_code: bool = False) -> None:
        """Connect to the current environment.

        A valid cached token connects immediately; otherwise a worker tries a
        silent refresh and falls back to browser sign-in or the device code flow.
        """
        env = self._current_environment()
        generation = self._new_auth_generation()
        cancel = self._auth_cancel
        self.screen = Authenticating(env.name, generation)

        if not force_device_code:
            token = self.token_store.load_valid(env.name)
            if token is not None:
                self._connect(env, token)
                return

        self._set_status(f"Signing in to {env.name}...")
        self._dispatch(
            "authenticate",
            lambda: self._run_auth(env, generation, cancel, not force_device_code),
            env.name,
        )

    def _run_auth(self, env: Environment, generation: int, cancel: threading.Event,
                  try_refresh: bool) -> Message:
        """Worker side of sign-in. Every failure comes back as AuthFailed for this generation."""
        try:
            if try_refresh:
                try:
                    token = self._refresh(env, self.token_store, session=self.session)
                    return AuthSucceeded(env.name, generation, token)
                except RefreshFailedError as exc:
                    logger.info(f"[auth] Silent refresh unavailable for {env.name}: {exc}")
            if self._browser_auth is not None:
                token = self._browser_auth(env.url)
            else:
                challenge = self._begin_auth(env.url, session=self.session)
                self.inbox.put(AuthChallengeIssued(env.name, generation, challenge))
                token = self._poll(challenge, env.url, session=self.session, cancel=cancel)
        except AuthError as exc:
            return AuthFailed(env.name, generation, exc)
        except Exception as exc:
            logger.error(f"[auth] Sign-in to {env.name} failed unexpectedly: {exc}", exc_info=True)
            return AuthFailed(env.name, generation, exc)
        return AuthSucceeded(env.name, generation, token)

    def cancel_authentication(self) -> None:
        if not isinstance(self.screen, Authenticating):
            return
        self.leave_environment()
        self._set_status("Authentication cancelled")

    def relogin(self) -> None:
        env = self._current_environment()
        self.token_store.delete(env.name)
        self._disconnect()
        self.authenticate(force_device_code=True)

    def clear_auth(self, name: Optional[str] = None) -> bool:
        name = name or self.current_name
        if not name:
            raise EnvironmentNotFoundError("no environment selected")
        removed = self.token_store.delete(name)
        if self.environment is not None and self.environment.name == name:
            self.leave_environment()
        self._set_status(f"Cleared cached credentials for {name}")
        return removed

    def _new_auth_generation(self) -> int:
        self._auth_cancel.set()
        self._auth_cancel = threading.Event()
        self._auth_generation += 1
        return self._auth_generation

    def _cancel_auth(self) -> None:
        self._auth_cancel.set()
        self._auth_generation += 1

    def _is_current_auth(self, environment: str, generation: int) -> bool:
        return (
            generation == self._auth_generation
            and isinstance(self.screen, Authenticating)
            and self.screen.environment == environment
        )

    def _on_auth_challenge(self, msg: AuthChallengeIssued) -> None:
        if not self._is_current_auth(msg.environment, msg.generation):
            return
        self.screen = Authenticating(msg.environment, msg.generation, msg.challenge)
        challenge = msg.challenge
        self._set_status(
            challenge.message
            or f"Visit {challenge.verification_uri} and enter code {challenge.user_code}"
        )

    def _on_auth_succeeded(self, msg: AuthSucceeded) -> None:
        if not self._is_current_auth(msg.environment, msg.generation):
            logger.info(f"[auth] Discarding late sign-in result for {msg.environment}")
            return
        env = self.store.get_environment(msg.environment)
        if env is None:
            self.leave_environment()
            self._set_status(f"Environment {msg.environment} no longer exists", is_error=True)
            return
        try:
            self.token_store.save(env.name, msg.token)
        except OSError as exc:
            self.leave_environment()
            self._set_status(f"Authentication failed: cannot save credentials: {exc}", is_error=True)
            return
        self._connect(env, msg.token)

    def _on_auth_failed(self, msg: AuthFailed) -> None:
        if not self._is_current_auth(msg.environment, msg.generation):
            return
        self.leave_environment()
        self._set_status(f"Authentication failed: {msg.error}", is_error=True)

    def _connect(self, env: Environment, token: Token) -> None:
        self.environment = env
        self.client = self._client_factory(env, token)
        self.screen = ResourceList(env.name)
        self._set_status(f"Connected to {env.name}")
        self.fetch_resources()

    def _disconnect(self) -> None:
        self.environment = None
        self.client = None
        self.resources = []
        self.solutions = []
        # In-flight uploads keep their markers until their result arrives
        self._republish.clear()

    def _reauthenticate(self) -> None:
        if self.environment is None:
            return
        name = self.environment.name
        self._disconnect()
        self._set_status(f"Session for {name} expired, sign in again", is_error=True)
        self.authenticate(force_device_code=True)

    def _require_client(self) -> Tuple[Environment, Any]:
        if self.environment is None or self.client is None:
            raise NotConnectedError("not connected to an environment")
        return self.environment, self.client

    # ------------------------------------------------------------------
    # Remote listings
    # ------------------------------------------------------------------
    def fetch_resources(self) -> None:
        env, client = self._require_client()
        self._dispatch(
            "fetch_resources",
            lambda: ResourcesLoaded(env.name, client.list_web_resources()),
            env.name,
        )

    def _on_resources_loaded(self, msg: ResourcesLoaded) -> None:
        if self.environment is None or msg.environment != self.environment.name:
            return
        self.resources = list(msg.resources)
        self._set_status(f"Loaded {len(self.resources)} web resources")

    def fetch_solutions(self, resource_id: str = "") -> None:
        env, client = self._require_client()
        self.screen = SolutionPicker(env.name, resource_id)
        self._dispatch(
            "fetch_solutions",
            lambda: SolutionsLoaded(env.name, client.list_solutions(), resource_id),
            env.name,
            resource_id or None,
        )

    def _on_solutions_loaded(self, msg: SolutionsLoaded) -> None:
        if self.environment is None or msg.environment != self.environment.name:
            return
        self.solutions = list(msg.solutions)

    def add_to_solution(self, solution_unique_name: str, resource_id: str) -> None:
        env, client = self._require_client()

        def work() -> Message:
            client.add_web_resource_to_solution(solution_unique_name, resource_id)
            return AddedToSolution(env.name, resource_id, solution_unique_name)

        self._dispatch("add_to_solution", work, env.name, resource_id)

    def _on_added_to_solution(self, msg: AddedToSolution) -> None:
        if self.environment is not None and msg.environment == self.environment.name:
            self.screen = ResourceList(msg.environment)
        self._set_status(f"Added {msg.resource_id} to solution {msg.solution_unique_name}")

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------
    def bind(self, resource_id: str, resource_name: str, local_path: str,
             auto_publish: bool = True) -> Binding:
        env = self._current_environment()
        previous = self.store.get_binding(env.name, resource_id)
        binding = Binding(
            environment=env.name,
            local_path=normalize_path(local_path),
            web_resource_name=resource_name,
            web_resource_id=resource_id,
            last_known_version=INITIAL_BINDING_VERSION,
            auto_publish=auto_publish,
        )
        self.store.add_or_update_binding(binding)
        # A watch failure below replaces this status
        self._set_status(f"Bound {resource_name} to {binding.local_path}")
        if previous is not None and previous.local_path != binding.local_path:
            self._sync_watch(previous.local_path)
        self._sync_watch(binding.local_path)
        return binding

    def unbind(self, resource_id: str) -> Binding:
        env = self._current_environment()
        removed = self.store.delete_binding(env.name, resource_id)
        self._sync_watch(removed.local_path)
        self._republish.discard((env.name, resource_id))
        self._set_status(f"Unbound {removed.web_resource_name}")
        return removed

    def toggle_auto_publish(self, resource_id: str) -> Binding:
        env = self._current_environment()
        binding = self.store.get_binding(env.name, resource_id)
        if binding is None:
            raise BindingNotFoundError(f"no binding for {resource_id} in {env.name!r}")
        updated = self.store.set_auto_publish(env.name, resource_id, not binding.auto_publish)
        self._sync_watch(updated.local_path)
        state = "on" if updated.auto_publish else "off"
        self._set_status(f"Auto-publish {state} for {updated.web_resource_name}")
        return updated

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish(self, resource_id: str) -> bool:
        """Start publishing one binding of the connected environment.

        A request for a resource already being published is coalesced into a
        single follow-up publish. Returns False when nothing was started or
        queued.
        """
        if self.environment is None or self.client is None:
            self._set_status("Not connected", is_error=True)
            return False
        env_name = self.environment.name
        key = (env_name, resource_id)
        if key in self._publishing:
            self._republish.add(key)
            logger.debug(f"[publish] {resource_id} busy, follow-up queued")
            return True

        try:
            binding = self.pipeline.prepare(env_name, resource_id)
        except PublisherError as exc:
            self._set_status(str(exc), is_error=True)
            return False

        self._publishing.add(key)
        client = self.client
        self._set_status(f"Publishing {binding.web_resource_name}...")
        self._dispatch(
            "publish",
            lambda: self._run_upload(binding, client),
            env_name,
            resource_id,
        )
        return True

    def is_publishing(self, resource_id: str) -> bool:
        return self.environment is not None and (self.environment.name, resource_id) in self._publishing

    def _run_upload(self, binding: Binding, client: Any) -> Message:
        try:
            return PublishUploaded(self.pipeline.upload(binding, client))
        except PublisherError as exc:
            return PublishFailed(binding.environment, binding.web_resource_id, binding.local_path, exc)

    def _on_publish_uploaded(self, msg: PublishUploaded) -> None:
        outcome = msg.outcome
        key = (outcome.environment, outcome.resource_id)
        self._publishing.discard(key)
        try:
            binding = self.pipeline.commit(outcome)
        except PublisherError as exc:
            self._set_status(str(exc), is_error=True)
        else:
            self._set_status(f"Published {binding.web_resource_name} ({binding.last_known_version})")
        self._follow_up(key)

    def _on_publish_failed(self, msg: PublishFailed) -> None:
        key = (msg.environment, msg.resource_id)
        self._publishing.discard(key)
        connected = self.environment is not None and self.environment.name == msg.environment
        if isinstance(msg.error, UnauthorizedError) and connected:
            self._republish.discard(key)
            self._reauthenticate()
            return
        self._set_status(
            f"Publish failed for {msg.local_path} ({msg.resource_id}): {msg.error}", is_error=True
        )
        self._follow_up(key)

    def _follow_up(self, key: PublishKey) -> None:
        if key not in self._republish:
            return
        self._republish.discard(key)
        if self.environment is not None and self.environment.name == key[0]:
            self.publish(key[1])

    def _on_file_changed(self, msg: FileChanged) -> None:
        if msg.generation != self.watch.generation:
            logger.debug(f"[watch] Dropping stale change for {msg.path}")
            return
        env = self.current_name
        if not env:
            return
        matches = [
            b for b in self.store.bindings_for_environment(env)
            if b.auto_publish and normalize_path(b.local_path) == msg.path
        ]
        if not matches:
            return
        if self.client is None:
            logger.info(f"[watch] Not connected, ignoring change to {msg.path}")
            return
        for binding in matches:
            self.publish(binding.web_resource_id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_web_resources(self, files: Iterable[CreateFileInfo],
                             solution_unique_name: Optional[str] = None) -> None:
        env, client = self._require_client()
        files = list(files)
        self._set_status(f"Creating {len(files)} web resource(s)...")
        self._dispatch(
            "create",
            lambda: ResourcesCreated(
                env.name, ResourceCreator(client).create_all(files, solution_unique_name)
            ),
            env.name,
        )

    def _on_resources_created(self, msg: ResourcesCreated) -> None:
        report = msg.report
        self.last_create_report = report
        if self.store.get_environment(msg.environment) is not None:
            for created in report.created:
                self.store.add_or_update_binding(
                    Binding(
                        environment=msg.environment,
                        local_path=normalize_path(created.file.local_path),
                        web_resource_name=created.file.web_resource_name,
                        web_resource_id=created.resource_id,
                    )
                )
                if msg.environment == self.current_name:
                    self._sync_watch(created.file.local_path)
        self._set_status(report.summary(), is_error=not report.ok)
        if self.environment is not None and self.environment.name == msg.environment:
            self.screen = ResourceList(msg.environment)
            self.fetch_resources()

    def _on_task_failed(self, msg: TaskFailed) -> None:
        if msg.task == "publish" and msg.resource_id:
            self._publishing.discard((msg.environment, msg.resource_id))
        connected = self.environment is not None and self.environment.name == msg.environment
        if isinstance(msg.error, UnauthorizedError) and connected:
            self._reauthenticate()
            return
        if not connected and msg.task != "publish":
            logger.info(f"[orchestrator] Ignoring stale {msg.task} failure for {msg.environment}")
            return
        if msg.task == "fetch_solutions" and connected:
            self.screen = ResourceList(msg.environment)
        self._set_status(f"{msg.task} failed: {msg.error}", is_error=True)


__all__ = ["Orchestrator"]
