"""
identity/mail.py -- Outbound mail contract.

The identity core only asks for two messages to be sent. Delivery, templates,
and retries belong to the mail worker behind a Mailer implementation; from
the core's point of view sending is fire-and-forget.

LoggingMailer is the development implementation: it records what would have
been sent. It logs the user id only, never the token, since the token is a
credential.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from identity.models import User

logger = logging.getLogger("identity.mail")


class Mailer(ABC):
    @abstractmethod
    def send_verify_email(self, user: User) -> None:
        """Send the link carrying user.verify_email_address_token."""

    @abstractmethod
    def send_password_reset(self, user: User) -> None:
        """Send the link carrying user.password_reset_token."""


class LoggingMailer(Mailer):
    def send_verify_email(self, user: User) -> None:
        logger.info("Verification email queued for user id=%s", user.id)

    def send_password_reset(self, user: User) -> None:
        logger.info("Password reset email queued for user id=%s", user.id)
