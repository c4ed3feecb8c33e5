"""Unit tests for identity/bootstrap.py -- first-user elevation.

Covers:
- the first user on an empty store becomes global admin
- the repository is consulted at most once per gate, whatever the outcome
- concurrent callers at cold start trigger exactly one repository check
- a repository failure leaves the gate unchecked so a later call retries
- release() hands a granted slot back to the next candidate
"""

import threading
from unittest.mock import MagicMock

import pytest

from core.errors import PersistenceError
from identity.bootstrap import FirstUserGate
from identity.models import DEFAULT_ROLES, ROLE_GLOBAL_ADMIN, User


def _candidate() -> User:
    return User(full_name="C", email_address="c@example.com", roles=set(DEFAULT_ROLES))


def test_first_user_granted_admin(store) -> None:
    gate = FirstUserGate(store)
    user = _candidate()
    assert gate.maybe_grant_admin(user) is True
    assert ROLE_GLOBAL_ADMIN in user.roles
    assert gate.checked is True


def test_not_granted_when_users_exist(store, make_user) -> None:
    make_user()
    gate = FirstUserGate(store)
    user = _candidate()
    assert gate.maybe_grant_admin(user) is False
    assert ROLE_GLOBAL_ADMIN not in user.roles
    assert gate.checked is True


def test_repository_consulted_once() -> None:
    repo = MagicMock()
    repo.reserve_first_user.return_value = False
    gate = FirstUserGate(repo)
    gate.maybe_grant_admin(_candidate())
    gate.maybe_grant_admin(_candidate())
    gate.maybe_grant_admin(_candidate())
    repo.reserve_first_user.assert_called_once()


def test_second_candidate_never_granted_after_first() -> None:
    repo = MagicMock()
    repo.reserve_first_user.return_value = True
    gate = FirstUserGate(repo)
    first, second = _candidate(), _candidate()
    assert gate.maybe_grant_admin(first) is True
    assert gate.maybe_grant_admin(second) is False
    assert ROLE_GLOBAL_ADMIN not in second.roles


def test_concurrent_callers_check_once() -> None:
    repo = MagicMock()
    repo.reserve_first_user.return_value = True
    gate = FirstUserGate(repo)
    results: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        granted = gate.maybe_grant_admin(_candidate())
        with lock:
            results.append(granted)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    repo.reserve_first_user.assert_called_once()
    assert results.count(True) == 1
    assert len(results) == 16


def test_repository_failure_leaves_gate_unchecked() -> None:
    repo = MagicMock()
    repo.reserve_first_user.side_effect = [PersistenceError("down"), True]
    gate = FirstUserGate(repo)
    with pytest.raises(PersistenceError):
        gate.maybe_grant_admin(_candidate())
    assert gate.checked is False
    assert gate.maybe_grant_admin(_candidate()) is True


def test_release_reopens_the_slot() -> None:
    repo = MagicMock()
    repo.reserve_first_user.return_value = True
    gate = FirstUserGate(repo)
    first = _candidate()
    gate.maybe_grant_admin(first)

    gate.release(first)

    assert ROLE_GLOBAL_ADMIN not in first.roles
    assert gate.checked is False
    repo.release_first_user.assert_called_once()
    assert gate.maybe_grant_admin(_candidate()) is True
    assert repo.reserve_first_user.call_count == 2


def test_release_against_store_lets_next_user_win(store) -> None:
    gate = FirstUserGate(store)
    lost = _candidate()
    gate.maybe_grant_admin(lost)
    gate.release(lost)

    assert FirstUserGate(store).maybe_grant_admin(_candidate()) is True
