"""Sync scheduler and account state for GitHub note sync.

Wraps the merge engine behind a non-reentrant gate: at most one pass
runs at a time, and a sync requested mid-pass is queued and re-issued
once when the running pass finishes. Auto-sync and the post-edit
debounce run on ``threading.Timer`` daemon threads.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from gitnote_sync.config import SyncConfig
from gitnote_sync.exceptions import (
    ConflictError,
    GitNoteError,
    StoreNotInitializedError,
    ValidationError,
)
from gitnote_sync.models.schema import (
    ConflictDecision,
    ConflictSet,
    LoginResult,
    PullResult,
    ResolveResult,
    SyncResult,
    SyncStatus,
    utc_now_iso,
)
from gitnote_sync.observability import timed_operation
from gitnote_sync.services.conflict_service import ConflictResolver
from gitnote_sync.services.merge_engine import MergeEngine
from gitnote_sync.storage.remote_store import RemoteContentStore
from gitnote_sync.storage.settings_store import SettingsStore
from gitnote_sync.storage.sync_repository import SyncRepository

logger = logging.getLogger(__name__)

NOT_LOGGED_IN = "Please log in to GitHub first"
SYNC_IN_PROGRESS = "Sync already in progress"

# Settings keys owned by this service
KEY_TOKEN = "github.accessToken"
KEY_USER = "github.user"
KEY_OWNER = "github.owner"
KEY_REPO = "github.repo"
KEY_LAST_SYNC = "github.lastSync"
KEY_STATUS = "github.syncStatus"
KEY_MESSAGE = "github.syncMessage"
KEY_AUTO_SYNC = "github.autoSyncEnabled"
KEY_INTERVAL = "github.syncInterval"
KEY_CONFLICTS = "github.conflicts"

RemoteFactory = Callable[[str, Optional[str], str], RemoteContentStore]


class SyncService:
    """Login, sync passes, conflict resolution and timers."""

    def __init__(
        self,
        config: SyncConfig,
        repository: SyncRepository,
        settings: SettingsStore,
        remote_factory: Optional[RemoteFactory] = None,
    ) -> None:
        self._config = config
        self._repository = repository
        self._settings = settings
        self._remote_factory = remote_factory or self._default_remote
        self._remote: Optional[RemoteContentStore] = None

        self._sync_lock = threading.Lock()
        self._is_syncing = False
        self._pending_sync = False

        self._timer_lock = threading.Lock()
        self._auto_timer: Optional[threading.Timer] = None
        self._debounce_timer: Optional[threading.Timer] = None
        self._followup_timer: Optional[threading.Timer] = None
        self._closed = False

        self._sync_interval = int(settings.get(KEY_INTERVAL, config.sync_interval))
        self._restore_session()

    def _default_remote(
        self, token: str, owner: Optional[str], repo: str
    ) -> RemoteContentStore:
        return RemoteContentStore(token, self._config, owner=owner, repo=repo)

    def _restore_session(self) -> None:
        token = self._settings.get(KEY_TOKEN)
        if not token:
            return
        self._remote = self._remote_factory(
            token,
            self._settings.get(KEY_OWNER),
            self._settings.get(KEY_REPO, self._config.repo_name),
        )
        if self._settings.get(KEY_AUTO_SYNC, False):
            self.start_auto_sync()

    def _engine(self) -> MergeEngine:
        if self._remote is None:
            raise StoreNotInitializedError("Remote store not connected")
        return MergeEngine(self._remote, self._repository, self._settings)

    # =========================================================================
    # Account
    # =========================================================================

    def login(self, token: str) -> LoginResult:
        """Validate ``token``, remember the account and ensure the repository exists."""
        remote = self._remote_factory(token, None, self._config.repo_name)
        try:
            user = remote.get_authenticated_user()
            remote.owner = user["login"]

            self._settings.set(KEY_TOKEN, token)
            self._settings.set(KEY_USER, user)
            self._settings.set(KEY_OWNER, user["login"])
            self._settings.set(KEY_REPO, remote.repo)

            remote.ensure_container_exists()
        except GitNoteError as e:
            logger.error("GitHub login failed: %s", e)
            remote.close()
            if self._remote is not None:
                self._remote.close()
            self._remote = None
            return LoginResult(success=False, error=e.message)

        if self._remote is not None and self._remote is not remote:
            self._remote.close()
        self._remote = remote
        logger.info("Logged in to GitHub as %s", user["login"])
        return LoginResult(success=True, user=user)

    def logout(self) -> None:
        self.stop_auto_sync()
        for key in (KEY_TOKEN, KEY_USER, KEY_OWNER, KEY_REPO, KEY_LAST_SYNC):
            self._settings.delete(key)
        if self._remote is not None:
            self._remote.close()
            self._remote = None
        logger.info("Logged out of GitHub")

    def is_logged_in(self) -> bool:
        return self._remote is not None and bool(self._settings.get(KEY_TOKEN))

    def get_user(self) -> Optional[Dict[str, Any]]:
        return self._settings.get(KEY_USER)

    # =========================================================================
    # Sync passes
    # =========================================================================

    def _acquire(self, queue_followup: bool) -> bool:
        with self._sync_lock:
            if self._is_syncing:
                if queue_followup:
                    self._pending_sync = True
                return False
            self._is_syncing = True
            return True

    def _release(self) -> bool:
        """Clear the running flag; returns whether a follow-up was requested."""
        with self._sync_lock:
            self._is_syncing = False
            pending = self._pending_sync
            self._pending_sync = False
            return pending

    def sync_all(self) -> SyncResult:
        """Push the whole local store, pulling first when no conflicts are pending.

        Returns a failed result instead of raising for remote failures.
        A call made while a pass is running queues exactly one follow-up.
        """
        if not self.is_logged_in():
            return SyncResult(success=False, message=NOT_LOGGED_IN)
        if not self._acquire(queue_followup=True):
            return SyncResult(success=False, message=SYNC_IN_PROGRESS)

        self._update_status("syncing", "Syncing...")
        try:
            pending = self.get_config_conflicts()
            with timed_operation("sync", owner=self._remote.owner, repo=self._remote.repo) as op:
                outcome = self._engine().push(pull_first=pending.is_empty())
                op["synced_files"] = outcome.synced_files
                op["written"] = outcome.written
                op["deleted"] = outcome.deleted

            message = f"Synced {outcome.synced_files} files to GitHub"
            if outcome.conflicts is not None:
                self._store_conflicts(outcome.conflicts)
                message += f"; {outcome.conflicts.count()} config conflict(s) need resolution"
            elif not pending.is_empty():
                message += f"; {pending.count()} config conflict(s) still pending"

            self._settings.set(KEY_LAST_SYNC, utc_now_iso())
            self._update_status("success", message)
            self._repository.record_sync("push", "success", message, outcome.synced_files)
            return SyncResult(success=True, message=message, synced_files=outcome.synced_files)
        except StoreNotInitializedError:
            self._update_status("error", "Local store not initialized")
            raise
        except (GitNoteError, SQLAlchemyError) as e:
            message = str(e.message if isinstance(e, GitNoteError) else e)
            logger.error("Sync failed: %s", message)
            self._update_status("error", message)
            self._record_failure("push", message)
            return SyncResult(success=False, message=message)
        finally:
            if self._release():
                self._schedule_followup()

    def pull_from_github(self) -> PullResult:
        """Merge remote changes into the local store without pushing."""
        if not self.is_logged_in():
            return PullResult(success=False, message=NOT_LOGGED_IN)
        if not self._acquire(queue_followup=False):
            return PullResult(success=False, message=SYNC_IN_PROGRESS)

        try:
            pending = self.get_config_conflicts()
            if not pending.is_empty():
                return PullResult(
                    success=False,
                    message=f"Resolve {pending.count()} pending config conflict(s) before pulling",
                    conflicts=pending,
                )

            with timed_operation("pull", owner=self._remote.owner, repo=self._remote.repo) as op:
                outcome = self._engine().pull()
                op["new_notes"] = outcome.new_notes
                op["updated_notes"] = outcome.updated_notes

            message = (
                f"Pull finished: {outcome.new_notes} new notes, "
                f"{outcome.updated_notes} updated"
            )
            self._repository.record_sync(
                "pull", "success", message, outcome.new_notes + outcome.updated_notes
            )
            return PullResult(
                success=True,
                message=message,
                new_notes=outcome.new_notes,
                updated_notes=outcome.updated_notes,
            )
        except ConflictError as e:
            self._store_conflicts(e.conflicts)
            self._record_failure("pull", e.message)
            return PullResult(success=False, message=e.message, conflicts=e.conflicts)
        except StoreNotInitializedError:
            raise
        except (GitNoteError, SQLAlchemyError) as e:
            message = str(e.message if isinstance(e, GitNoteError) else e)
            logger.error("Pull failed: %s", message)
            self._record_failure("pull", message)
            return PullResult(success=False, message=message)
        finally:
            self._release()

    def _record_failure(self, sync_type: str, message: str) -> None:
        try:
            self._repository.record_sync(sync_type, "error", message, 0)
        except SQLAlchemyError as e:
            logger.warning("Could not record %s failure in history: %s", sync_type, e)

    # =========================================================================
    # Conflicts
    # =========================================================================

    def get_config_conflicts(self) -> ConflictSet:
        data = self._settings.get(KEY_CONFLICTS)
        if not data:
            return ConflictSet()
        return ConflictSet.model_validate(data)

    def _store_conflicts(self, conflicts: ConflictSet) -> None:
        if conflicts.is_empty():
            self._settings.delete(KEY_CONFLICTS)
        else:
            self._settings.set(KEY_CONFLICTS, conflicts.model_dump(mode="json"))

    def resolve_config_conflicts(self, decisions: Iterable[ConflictDecision]) -> ResolveResult:
        """Apply per-record decisions to the pending conflict set.

        Decided records are removed. When nothing is left pending, the
        resolved config snapshot is published directly, without a pull.
        """
        pending = self.get_config_conflicts()
        if pending.is_empty():
            return ResolveResult(success=True, message="No pending config conflicts")

        resolver = ConflictResolver(self._repository, self._settings)
        try:
            remaining = resolver.apply(pending, decisions)
        except SQLAlchemyError as e:
            logger.error("Applying conflict decisions failed: %s", e)
            return ResolveResult(success=False, message=f"Local store error: {e}")
        self._store_conflicts(remaining)
        if resolver.failed:
            names = ", ".join(f"{kind}:{key}" for kind, key in resolver.failed)
            return ResolveResult(
                success=False,
                message=(
                    f"Could not apply {names}; "
                    f"{remaining.count()} config conflict(s) still pending"
                ),
            )
        if not remaining.is_empty():
            return ResolveResult(
                success=True,
                message=f"{remaining.count()} config conflict(s) still pending",
            )

        if not self.is_logged_in():
            return ResolveResult(success=True, message="Conflicts resolved; log in to publish")
        if not self._acquire(queue_followup=False):
            return ResolveResult(
                success=True, message="Conflicts resolved; publish deferred to the running sync"
            )
        try:
            with timed_operation("push_config"):
                self._engine().push_config()
        except GitNoteError as e:
            logger.error("Publishing resolved config failed: %s", e)
            return ResolveResult(success=False, message=e.message)
        finally:
            self._release()
        return ResolveResult(success=True, message="Conflicts resolved and config published")

    # =========================================================================
    # Timers
    # =========================================================================

    def _start_timer(self, delay: float, target: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, target)
        timer.daemon = True
        timer.start()
        return timer

    def _schedule_followup(self) -> None:
        with self._timer_lock:
            if self._closed:
                return
            if self._followup_timer is not None:
                self._followup_timer.cancel()
            logger.debug("Re-issuing queued sync in %.1fs", self._config.followup_delay)
            self._followup_timer = self._start_timer(self._config.followup_delay, self._followup)

    def _followup(self) -> None:
        with self._timer_lock:
            self._followup_timer = None
        self.sync_all()

    def start_auto_sync(self) -> None:
        """(Re)arm the periodic sync timer. No-op when logged out."""
        self.stop_auto_sync(persist=False)
        if not self.is_logged_in():
            return
        with self._timer_lock:
            self._auto_timer = self._start_timer(self._sync_interval * 60, self._auto_tick)
        self._settings.set(KEY_AUTO_SYNC, True)
        logger.info("Auto sync started: every %d minutes", self._sync_interval)

    def _auto_tick(self) -> None:
        fired = threading.current_thread()
        try:
            self.sync_all()
        finally:
            with self._timer_lock:
                # Only the currently installed timer re-arms the chain
                if self._auto_timer is fired and not self._closed:
                    self._auto_timer = self._start_timer(
                        self._sync_interval * 60, self._auto_tick
                    )

    def stop_auto_sync(self, persist: bool = True) -> None:
        with self._timer_lock:
            if self._auto_timer is not None:
                self._auto_timer.cancel()
                self._auto_timer = None
        if persist:
            self._settings.set(KEY_AUTO_SYNC, False)
            logger.info("Auto sync stopped")

    @property
    def auto_sync_active(self) -> bool:
        return self._auto_timer is not None

    def set_sync_interval(self, minutes: int) -> None:
        """Change the auto-sync period, restarting an active timer.

        Raises:
            ValidationError: If ``minutes`` is below 1.
        """
        if minutes < 1:
            raise ValidationError(
                "Sync interval must be at least 1 minute", field="sync_interval", value=minutes
            )
        self._sync_interval = minutes
        self._settings.set(KEY_INTERVAL, minutes)
        if self.auto_sync_active:
            self.start_auto_sync()

    def mark_dirty(self) -> None:
        """Note a local change; syncs once after the debounce delay.

        Only acts while auto-sync is enabled. Further calls are ignored
        until the armed timer fires.
        """
        if not self._settings.get(KEY_AUTO_SYNC, False):
            return
        with self._timer_lock:
            if self._debounce_timer is not None or self._closed:
                return
            self._debounce_timer = self._start_timer(
                self._config.debounce_delay, self._debounced_sync
            )

    def _debounced_sync(self) -> None:
        with self._timer_lock:
            self._debounce_timer = None
        self.sync_all()

    # =========================================================================
    # Status
    # =========================================================================

    def _update_status(self, status: str, message: str) -> None:
        self._settings.set(KEY_STATUS, status)
        self._settings.set(KEY_MESSAGE, message)

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            last_sync=self._settings.get(KEY_LAST_SYNC),
            status="syncing" if self._is_syncing else self._settings.get(KEY_STATUS, "idle"),
            message=self._settings.get(KEY_MESSAGE, ""),
            auto_sync_enabled=bool(self._settings.get(KEY_AUTO_SYNC, False)),
            sync_interval=self._sync_interval,
        )

    def get_sync_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self._repository.list_sync_history(limit)

    def shutdown(self) -> None:
        """Cancel all timers and close the remote client."""
        with self._timer_lock:
            self._closed = True
            for timer in (self._auto_timer, self._debounce_timer, self._followup_timer):
                if timer is not None:
                    timer.cancel()
            self._auto_timer = None
            self._debounce_timer = None
            self._followup_timer = None
        if self._remote is not None:
            self._remote.close()
        logger.info("SyncService shut down")
