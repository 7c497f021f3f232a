"""Exception hierarchy shared by the command engine and its collaborators."""

from __future__ import annotations


class CommandError(RuntimeError):
    """Base class for failures reported to the user as a single diagnostic line.

    The message is printed verbatim to the error stream; the shell never wraps
    it with a generic failure text and keeps running afterwards.
    """

    status = 1

    def diagnostic(self) -> str:
        return str(self)


class PreconditionError(CommandError):
    """Raised when the session lacks an opened store, network or identity."""


class CollaboratorError(CommandError):
    """Raised when an external store or network operation fails."""


__all__ = ["CommandError", "PreconditionError", "CollaboratorError"]
