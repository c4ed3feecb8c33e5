"""
identity/bootstrap.py -- First-user elevation.

The very first account ever created becomes a global admin. Asking the
repository "is this the first user?" is only worth doing until the answer has
been obtained once, so each process remembers that it already asked.

Two layers keep this race-free:
  - In-process: the "already checked" flag is tested and set under a lock, so
    concurrent requests in one process run the repository check at most once.
  - Cross-process: the repository check is an atomic reservation
    (reserve_first_user), not a count followed by a write. Two processes
    starting against an empty database cannot both win it.

If the granted account cannot be saved, release() hands the slot back so a
later signup can still claim it.

Create one FirstUserGate per process and share it between service instances.
"""

from __future__ import annotations

import logging
import threading

from identity.models import ROLE_GLOBAL_ADMIN, User
from identity.repository import UserRepository

logger = logging.getLogger("identity.bootstrap")


class FirstUserGate:
    def __init__(self, store: UserRepository) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._checked = False

    @property
    def checked(self) -> bool:
        return self._checked

    def maybe_grant_admin(self, candidate: User) -> bool:
        """Add the global admin role to candidate if it is the first user.

        Returns False without touching the repository once any earlier call in
        this process has completed its check, whatever the outcome was. If the
        repository raises, the flag stays unset and the error propagates.
        """
        if self._checked:
            return False
        with self._lock:
            if self._checked:
                return False
            is_first = self._store.reserve_first_user()
            self._checked = True

        if is_first:
            candidate.roles.add(ROLE_GLOBAL_ADMIN)
            logger.warning("Granting global admin to the first user")
        return is_first

    def release(self, candidate: User) -> None:
        """Give back a granted first-user slot whose account was never saved.

        The admin role is taken off candidate and the repository claim is
        dropped. The checked flag is cleared so the next account can still
        become admin.
        """
        candidate.roles.discard(ROLE_GLOBAL_ADMIN)
        with self._lock:
            self._store.release_first_user()
            self._checked = False
        logger.warning("Released first-user slot after a failed save")
