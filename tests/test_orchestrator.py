"""Tests for the admin reset workflow."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from clientdesk.errors import ResetInProgressError, ServerError, UnclassifiedTransportError
from clientdesk.local_store import LocalStore
from clientdesk.models import AdminProvisionRequest
from clientdesk.orchestrator import (
    LEDGER_KEY,
    AdminResetOrchestrator,
    AlwaysConfirm,
    ConsoleConfirmation,
    NeverConfirm,
    ProvisioningForm,
    ResetStage,
)
from clientdesk.transport import Transport
from clientdesk.users import UserDirectory


class FakeDirectory:
    """In-memory stand-in for :class:`UserDirectory`."""

    def __init__(
        self,
        users: List[Dict[str, Any]],
        *,
        failing_deletes: Set[str] | None = None,
        fail_list: bool = False,
        fail_register: bool = False,
    ) -> None:
        self.users = list(users)
        self.failing_deletes = set(failing_deletes or ())
        self.fail_list = fail_list
        self.fail_register = fail_register
        self.list_calls = 0
        self.delete_calls: List[str] = []
        self.register_calls: List[Dict[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.seen_request: Optional[AdminProvisionRequest] = None

    async def list_users(self) -> List[Dict[str, Any]]:
        self.list_calls += 1
        if self.fail_list:
            raise ServerError("Server error occurred. Please try again later.")
        return [dict(user) for user in self.users]

    async def delete_user(self, user_id: str) -> Dict[str, str]:
        self.delete_calls.append(user_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if user_id in self.failing_deletes:
                raise UnclassifiedTransportError(f"Cannot delete {user_id}")
            self.users = [user for user in self.users if (user.get("_id") or user.get("id")) != user_id]
            return {"message": "User deleted"}
        finally:
            self.in_flight -= 1

    async def register_admin(self, request: AdminProvisionRequest) -> Dict[str, str]:
        self.seen_request = request
        self.register_calls.append(request.to_payload())
        if self.fail_register:
            raise UnclassifiedTransportError("Email already registered")
        return {"message": "User registered"}


def _users() -> List[Dict[str, Any]]:
    return [
        {"_id": "u1", "name": "Ann", "email": "ann@example.com"},
        {"id": "u2", "name": "Bob", "email": "bob@example.com"},
        {"_id": "u3", "name": "Cy", "email": "cy@example.com", "role": "admin"},
    ]


def _orchestrator(directory, confirmation=None, **kwargs) -> AdminResetOrchestrator:
    orchestrator = AdminResetOrchestrator(directory, confirmation or AlwaysConfirm(), **kwargs)
    orchestrator.form.password = "n3w-Admin-pass"
    return orchestrator


def _run(coro):
    return asyncio.run(coro)


def test_successful_reset() -> None:
    directory = FakeDirectory(_users())
    orchestrator = _orchestrator(directory)
    orchestrator.users = _users()

    state = _run(orchestrator.execute())

    assert state.stage is ResetStage.SUCCEEDED
    assert state.success is True
    assert "admin@example.com" in state.message
    assert sorted(directory.delete_calls) == ["u1", "u2", "u3"]
    assert directory.register_calls == [
        {
            "email": "admin@example.com",
            "name": "Admin",
            "password": "n3w-Admin-pass",
            "phone": "0830000000",
            "role": "admin",
        }
    ]
    assert orchestrator.users == []
    assert orchestrator.form.password == ""
    assert directory.seen_request is not None and directory.seen_request.password == ""
    assert state.history == [
        ResetStage.IDLE,
        ResetStage.CONFIRMING,
        ResetStage.FETCHING,
        ResetStage.DELETING,
        ResetStage.CREATING,
        ResetStage.SUCCEEDED,
    ]
    assert orchestrator.loading is False


def test_deletes_are_issued_concurrently() -> None:
    directory = FakeDirectory(_users())
    orchestrator = _orchestrator(directory)

    _run(orchestrator.execute())

    assert directory.max_in_flight == 3


def test_one_failed_delete_halts_before_creation() -> None:
    directory = FakeDirectory(_users(), failing_deletes={"u2"})
    orchestrator = _orchestrator(directory)

    state = _run(orchestrator.execute())

    assert state.stage is ResetStage.FAILED
    assert state.failed_stage is ResetStage.DELETING
    assert directory.register_calls == []
    # Every delete settles before the outcome is examined.
    assert sorted(directory.delete_calls) == ["u1", "u2", "u3"]
    assert state.delete_outcomes == {"u1": None, "u2": "Cannot delete u2", "u3": None}
    assert state.message.startswith("Error deleting users: 1 of 3 delete requests failed")
    assert orchestrator.form.password == "n3w-Admin-pass"
    assert orchestrator.loading is False


def test_declining_confirmation_makes_no_calls() -> None:
    directory = FakeDirectory(_users())
    orchestrator = _orchestrator(directory, NeverConfirm())

    state = _run(orchestrator.execute())

    assert state.stage is ResetStage.IDLE
    assert directory.list_calls == 0
    assert directory.delete_calls == []
    assert directory.register_calls == []


def test_fetch_failure_is_reported() -> None:
    directory = FakeDirectory(_users(), fail_list=True)
    orchestrator = _orchestrator(directory)

    state = _run(orchestrator.execute())

    assert state.failed_stage is ResetStage.FETCHING
    assert state.message == "Error loading users: Server error occurred. Please try again later."
    assert directory.delete_calls == []


def test_create_failure_is_reported_and_request_discarded() -> None:
    directory = FakeDirectory(_users(), fail_register=True)
    orchestrator = _orchestrator(directory)

    state = _run(orchestrator.execute())

    assert state.failed_stage is ResetStage.CREATING
    assert state.message == "Error creating admin user: Email already registered"
    assert state.failure is not None and state.failure.cause == "Email already registered"
    assert directory.seen_request is not None and directory.seen_request.password == ""
    assert len(directory.register_calls) == 1


def test_missing_credentials_are_rejected_before_any_call() -> None:
    directory = FakeDirectory(_users())
    orchestrator = _orchestrator(directory)
    orchestrator.form.password = ""

    with pytest.raises(ValueError):
        _run(orchestrator.execute())

    assert orchestrator.state.stage is ResetStage.IDLE
    assert directory.list_calls == 0


def test_concurrent_invocation_is_rejected() -> None:
    directory = FakeDirectory(_users())
    orchestrator = _orchestrator(directory)

    async def _twice():
        first = asyncio.create_task(orchestrator.execute())
        await asyncio.sleep(0)
        with pytest.raises(ResetInProgressError):
            await orchestrator.execute()
        return await first

    state = _run(_twice())

    assert state.stage is ResetStage.SUCCEEDED
    assert len(directory.register_calls) == 1


def test_rerun_after_partial_failure_only_deletes_remaining_users(tmp_path: Path) -> None:
    store = LocalStore(tmp_path / "clientdesk.sqlite3")
    store.initialize()
    directory = FakeDirectory(_users(), failing_deletes={"u2"})
    orchestrator = _orchestrator(directory, ledger_store=store)

    first = _run(orchestrator.execute())
    assert first.failed_stage is ResetStage.DELETING
    ledger = orchestrator.ledger
    assert ledger.deleted == {"u1", "u3"}
    assert set(ledger.failed) == {"u2"}
    assert ledger.deletions_confirmed is False

    directory.failing_deletes.clear()
    directory.delete_calls.clear()
    second = _run(orchestrator.execute())

    assert second.stage is ResetStage.SUCCEEDED
    assert directory.delete_calls == ["u2"]
    assert store.get(LEDGER_KEY) is None


def test_refresh_users_loads_display_list() -> None:
    directory = FakeDirectory(_users())
    orchestrator = _orchestrator(directory)

    users = _run(orchestrator.refresh_users())

    assert [user["name"] for user in users] == ["Ann", "Bob", "Cy"]
    assert orchestrator.users == users


def test_transition_callback_receives_every_stage() -> None:
    seen: List[ResetStage] = []
    directory = FakeDirectory([])
    orchestrator = _orchestrator(directory, on_transition=lambda stage, _state: seen.append(stage))

    _run(orchestrator.execute())

    assert seen == [
        ResetStage.CONFIRMING,
        ResetStage.FETCHING,
        ResetStage.DELETING,
        ResetStage.CREATING,
        ResetStage.SUCCEEDED,
    ]


def test_console_confirmation_accepts_only_yes() -> None:
    prompts: List[str] = []

    def _answer(text: str) -> str:
        prompts.append(text)
        return " Yes "

    assert _run(ConsoleConfirmation(_answer).confirm("Proceed?")) is True
    assert prompts == ["Proceed? [y/N]: "]
    assert _run(ConsoleConfirmation(lambda _text: "n").confirm("Proceed?")) is False

    def _eof(_text: str) -> str:
        raise EOFError

    assert _run(ConsoleConfirmation(_eof).confirm("Proceed?")) is False


def test_provision_request_hides_password() -> None:
    request = AdminProvisionRequest(email="a@example.com", name="A", password="secret", phone="1")

    assert "secret" not in repr(request)
    assert request.role == "admin"
    request.discard()
    assert request.password == ""


def test_user_directory_endpoints() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=[{"_id": "u1"}, {"_id": "u2"}])
        if request.method == "DELETE":
            return httpx.Response(200, json={"message": "User deleted"})
        return httpx.Response(201, json={"message": "User registered"})

    mock = httpx.MockTransport(handler)
    directory = UserDirectory(
        Transport("https://example.test/api/v1", transport=mock),
        Transport("https://example.test/api/auth", transport=mock),
    )
    orchestrator = _orchestrator(directory)

    state = _run(orchestrator.execute())

    assert state.stage is ResetStage.SUCCEEDED
    paths = sorted((request.method, request.url.path) for request in requests)
    assert paths == [
        ("DELETE", "/api/v1/users/u1"),
        ("DELETE", "/api/v1/users/u2"),
        ("GET", "/api/v1/users"),
        ("POST", "/api/auth/register"),
    ]
    register = next(request for request in requests if request.method == "POST")
    assert json.loads(register.content)["role"] == "admin"


def test_malformed_user_list_fails_the_fetch_stage() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[1, 2])

    mock = httpx.MockTransport(handler)
    directory = UserDirectory(
        Transport("https://example.test/api/v1", transport=mock),
        Transport("https://example.test/api/auth", transport=mock),
    )
    orchestrator = _orchestrator(directory)

    state = _run(orchestrator.execute())

    assert state.stage is ResetStage.FAILED
    assert state.failed_stage is ResetStage.FETCHING
    assert state.message == "Error loading users: Expected every user record to be an object"
    assert orchestrator.loading is False


class UnwritableLedgerStore(LocalStore):
    def set_json(self, key: str, value: Any) -> None:
        raise sqlite3.OperationalError("attempt to write a readonly database")


def test_ledger_write_failure_fails_the_delete_stage(tmp_path: Path) -> None:
    store = UnwritableLedgerStore(tmp_path / "clientdesk.sqlite3")
    store.initialize()
    directory = FakeDirectory(_users())
    orchestrator = _orchestrator(directory, ledger_store=store)

    state = _run(orchestrator.execute())

    assert state.stage is ResetStage.FAILED
    assert state.failed_stage is ResetStage.DELETING
    assert state.message.startswith("Error deleting users: Reset ledger could not be saved")
    assert directory.delete_calls == []
    assert directory.register_calls == []


def test_per_run_form_is_used_without_touching_shared_form() -> None:
    directory = FakeDirectory(_users())
    orchestrator = _orchestrator(directory)
    form = ProvisioningForm(email="boss@example.com", name="Boss", password="pw", phone="1")

    state = _run(orchestrator.execute(form=form))

    assert state.stage is ResetStage.SUCCEEDED
    assert directory.register_calls[0]["email"] == "boss@example.com"
    assert form.password == ""
    assert orchestrator.form.email == "admin@example.com"
    assert orchestrator.form.password == "n3w-Admin-pass"
