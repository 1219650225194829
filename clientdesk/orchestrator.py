"""Admin reset workflow: delete every user, then register a fresh administrator."""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

import anyio

from .errors import ClientDeskError, ResetInProgressError, StageFailure
from .local_store import LocalStore
from .models import AdminProvisionRequest, record_id
from .users import UserDirectory

logger = logging.getLogger("clientdesk.orchestrator")

LEDGER_KEY = "admin_reset_ledger"

CONFIRMATION_PROMPT = (
    "WARNING: This will DELETE ALL users and create a new admin user. Are you absolutely sure?"
)


class ResetStage(str, Enum):
    IDLE = "idle"
    CONFIRMING = "confirming"
    FETCHING = "fetching"
    DELETING = "deleting"
    CREATING = "creating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_STAGE_LABELS = {
    ResetStage.FETCHING: "loading users",
    ResetStage.DELETING: "deleting users",
    ResetStage.CREATING: "creating admin user",
}


# Confirmation providers -----------------------------------------------------


class ConfirmationProvider(Protocol):
    async def confirm(self, prompt: str) -> bool:
        ...


class AlwaysConfirm:
    async def confirm(self, prompt: str) -> bool:
        return True


class NeverConfirm:
    async def confirm(self, prompt: str) -> bool:
        return False


class StaticConfirmation:
    """Answer every prompt with a fixed decision, e.g. a flag from a request body."""

    def __init__(self, decision: bool) -> None:
        self._decision = bool(decision)

    async def confirm(self, prompt: str) -> bool:
        return self._decision


class ConsoleConfirmation:
    """Ask the operator on the terminal; only ``y``/``yes`` confirms."""

    def __init__(self, input_func: Callable[[str], str] = input) -> None:
        self._input = input_func

    async def confirm(self, prompt: str) -> bool:
        try:
            answer = await anyio.to_thread.run_sync(self._input, f"{prompt} [y/N]: ")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}


# State ---------------------------------------------------------------------


@dataclass
class ProvisioningForm:
    """Operator-edited fields used to build the administrator account."""

    email: str = "admin@example.com"
    name: str = "Admin"
    password: str = field(default="", repr=False)
    phone: str = "0830000000"


@dataclass
class ResetState:
    stage: ResetStage = ResetStage.IDLE
    message: str = ""
    success: bool = False
    failure: Optional[StageFailure] = None
    delete_outcomes: Dict[str, Optional[str]] = field(default_factory=dict)
    history: List[ResetStage] = field(default_factory=lambda: [ResetStage.IDLE])

    @property
    def failed_stage(self) -> Optional[ResetStage]:
        if self.failure is None:
            return None
        return ResetStage(self.failure.stage)

    def to_dict(self) -> Dict[str, object]:
        return {
            "stage": self.stage.value,
            "message": self.message,
            "success": self.success,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "delete_outcomes": dict(self.delete_outcomes),
        }


@dataclass
class ResetLedger:
    """Persisted per-user delete outcomes of the current reset attempt."""

    deleted: Set[str] = field(default_factory=set)
    failed: Dict[str, str] = field(default_factory=dict)
    deletions_confirmed: bool = False

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> "ResetLedger":
        if not data:
            return ResetLedger()
        return ResetLedger(
            deleted={str(item) for item in data.get("deleted", [])},
            failed={str(key): str(value) for key, value in (data.get("failed") or {}).items()},
            deletions_confirmed=bool(data.get("deletions_confirmed", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deleted": sorted(self.deleted),
            "failed": dict(self.failed),
            "deletions_confirmed": self.deletions_confirmed,
        }


class _LedgerSlot:
    """Ledger persistence; kept in memory when no local store is available.

    Storage failures surface as :class:`~clientdesk.errors.ClientDeskError`.
    """

    def __init__(self, store: Optional[LocalStore]) -> None:
        self._store = store
        self._memory: Optional[Dict[str, Any]] = None

    def load(self) -> ResetLedger:
        if self._store is None:
            return ResetLedger.from_dict(self._memory)
        try:
            return ResetLedger.from_dict(self._store.get_json(LEDGER_KEY))
        except (sqlite3.Error, AttributeError, TypeError, ValueError) as exc:
            raise ClientDeskError(f"Reset ledger could not be read: {exc}") from exc

    def save(self, ledger: ResetLedger) -> None:
        if self._store is None:
            self._memory = ledger.to_dict()
            return
        try:
            self._store.set_json(LEDGER_KEY, ledger.to_dict())
        except sqlite3.Error as exc:
            raise ClientDeskError(f"Reset ledger could not be saved: {exc}") from exc

    def clear(self) -> None:
        if self._store is None:
            self._memory = None
            return
        try:
            self._store.remove(LEDGER_KEY)
        except sqlite3.Error as exc:
            raise ClientDeskError(f"Reset ledger could not be cleared: {exc}") from exc


def _describe(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message.strip() or "Unknown error"


# Workflow ------------------------------------------------------------------


class AdminResetOrchestrator:
    """Run the destructive admin reset as an explicit state machine.

    ``execute`` never retries and never compensates: the first failing stage
    ends the run with :attr:`ResetStage.FAILED`. Per-user delete outcomes are
    kept in a ledger so a re-run only has to delete what is still left.
    """

    def __init__(
        self,
        directory: UserDirectory,
        confirmation: ConfirmationProvider,
        *,
        ledger_store: Optional[LocalStore] = None,
        form: Optional[ProvisioningForm] = None,
        on_transition: Optional[Callable[[ResetStage, "ResetState"], None]] = None,
    ) -> None:
        self._directory = directory
        self._confirmation = confirmation
        self._ledger = _LedgerSlot(ledger_store)
        self._on_transition = on_transition
        self.form = form or ProvisioningForm()
        self.state = ResetState()
        self.users: List[Dict[str, Any]] = []
        self._loading = False

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def ledger(self) -> ResetLedger:
        return self._ledger.load()

    def _transition(self, stage: ResetStage) -> None:
        self.state.stage = stage
        self.state.history.append(stage)
        logger.debug("Admin reset entered stage %s", stage.value)
        if self._on_transition is not None:
            self._on_transition(stage, self.state)

    def _fail(self, stage: ResetStage, exc: BaseException) -> ResetState:
        cause = _describe(exc)
        failure = StageFailure(stage.value, cause)
        self.state.failure = failure
        self.state.success = False
        self.state.message = f"Error {_STAGE_LABELS[stage]}: {cause}"
        logger.error("Admin reset failed while %s: %s", _STAGE_LABELS[stage], cause)
        self._transition(ResetStage.FAILED)
        return self.state

    async def refresh_users(self) -> List[Dict[str, Any]]:
        """Load the current user list for display."""

        try:
            users = await self._directory.list_users()
        except (ClientDeskError, ValueError) as exc:
            logger.warning("Error loading users: %s", _describe(exc))
            raise
        self.users = users
        return users

    async def execute(
        self,
        confirmation: Optional[ConfirmationProvider] = None,
        *,
        form: Optional[ProvisioningForm] = None,
    ) -> ResetState:
        """Run the reset once and return the terminal (or idle) state.

        ``form`` supplies the administrator fields for this run only; the
        shared :attr:`form` is used when it is omitted.
        """

        if self._loading:
            raise ResetInProgressError("An admin reset is already in progress")
        active = form if form is not None else self.form
        if not active.email.strip() or not active.password:
            raise ValueError("Admin email and password are required")

        self._loading = True
        try:
            return await self._run(confirmation or self._confirmation, active)
        finally:
            self._loading = False

    async def _run(self, confirmation: ConfirmationProvider, form: ProvisioningForm) -> ResetState:
        self.state = ResetState()
        self._transition(ResetStage.CONFIRMING)
        if not await confirmation.confirm(CONFIRMATION_PROMPT):
            logger.info("Admin reset declined by operator")
            self._transition(ResetStage.IDLE)
            return self.state

        self._transition(ResetStage.FETCHING)
        try:
            users = await self._directory.list_users()
        except (ClientDeskError, ValueError) as exc:
            return self._fail(ResetStage.FETCHING, exc)
        logger.info("Found %d users to delete", len(users))

        self._transition(ResetStage.DELETING)
        try:
            failure = await self._delete_all(users)
        except ClientDeskError as exc:
            return self._fail(ResetStage.DELETING, exc)
        if failure is not None:
            return self._fail(ResetStage.DELETING, failure)
        logger.info("All users deleted")

        self._transition(ResetStage.CREATING)
        try:
            confirmed = self._ledger.load().deletions_confirmed
        except ClientDeskError as exc:
            return self._fail(ResetStage.CREATING, exc)
        if not confirmed:
            return self._fail(
                ResetStage.CREATING, ClientDeskError("User deletions have not been confirmed")
            )

        request = AdminProvisionRequest(
            email=form.email.strip(),
            name=form.name.strip(),
            password=form.password,
            phone=form.phone.strip(),
        )
        try:
            await self._directory.register_admin(request)
        except (ClientDeskError, ValueError) as exc:
            return self._fail(ResetStage.CREATING, exc)
        finally:
            request.discard()

        try:
            self._ledger.clear()
        except ClientDeskError as exc:
            logger.warning("Administrator created; %s", _describe(exc))
        self.users = []
        form.password = ""
        self.state.success = True
        self.state.message = (
            f'Success! All users deleted and admin user "{request.email}" created. '
            "You can now log in with this account."
        )
        logger.info("Admin reset completed; administrator %s created", request.email)
        self._transition(ResetStage.SUCCEEDED)
        return self.state

    async def _delete_all(self, users: List[Dict[str, Any]]) -> Optional[BaseException]:
        """Fan out one delete per user and wait for every request to settle."""

        ledger = self._ledger.load()
        targets: List[str] = []
        for user in users:
            user_id = record_id(user)
            if user_id is None:
                return ValueError("User record is missing its identifier")
            targets.append(user_id)

        retried = [user_id for user_id in targets if user_id in ledger.failed]
        if retried:
            logger.info("Retrying %d deletes that failed in a previous run", len(retried))

        ledger.deletions_confirmed = False
        self._ledger.save(ledger)

        results = await asyncio.gather(
            *(self._directory.delete_user(user_id) for user_id in targets),
            return_exceptions=True,
        )

        first_failure: Optional[BaseException] = None
        failed_count = 0
        for user_id, result in zip(targets, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed_count += 1
                cause = _describe(result)
                ledger.failed[user_id] = cause
                self.state.delete_outcomes[user_id] = cause
                first_failure = first_failure or result
            else:
                ledger.deleted.add(user_id)
                ledger.failed.pop(user_id, None)
                self.state.delete_outcomes[user_id] = None

        ledger.deletions_confirmed = failed_count == 0
        self._ledger.save(ledger)

        if first_failure is not None:
            return ClientDeskError(
                f"{failed_count} of {len(targets)} delete requests failed: {_describe(first_failure)}"
            )
        return None


__all__ = [
    "AdminResetOrchestrator",
    "AlwaysConfirm",
    "CONFIRMATION_PROMPT",
    "ConfirmationProvider",
    "ConsoleConfirmation",
    "LEDGER_KEY",
    "NeverConfirm",
    "ProvisioningForm",
    "ResetLedger",
    "ResetStage",
    "ResetState",
    "StaticConfirmation",
]
