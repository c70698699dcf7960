# SPDX-FileCopyrightText: 2025-present Dan Pascu <dan@aethereal.link>
#
# SPDX-License-Identifier: AGPL-3.0-or-later


__all__ = 'RelaynodeError', 'InvalidEndpointError', 'MissingKeyError', 'RegistrationError'  # noqa: RUF022


class RelaynodeError(Exception):
    """
    Base class for the errors raised by relaynode.

    When the error was raised from another exception, the message of the
    precipitating exception is appended to this error's message, so that
    reporting the error to the user never hides its underlying cause.

    """

    def __str__(self) -> str:
        message = super().__str__()
        if self.__cause__ is not None:
            return f'{message}: {self.__cause__}'
        return message


class InvalidEndpointError(RelaynodeError):
    """
    Raised when the data of a first-party or a third-party endpoint is
    malformed or inconsistent with the local trust store.
    """


class RegistrationError(RelaynodeError):
    """Raised when the registration handshake with the gateway fails."""


class MissingKeyError(RelaynodeError):
    """Raised when a key store does not hold the requested key."""
