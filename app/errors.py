from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    """Why a commit attempt did not succeed (besides a conflict)."""

    not_found = "not_found"
    auth = "auth"
    validation = "validation"
    remote_rejected = "remote_rejected"
    network = "network"
    timeout = "timeout"


class CommitError(Exception):
    """Base class of every error raised while resolving or committing."""

    reason: FailureReason = FailureReason.remote_rejected

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


# the branch or the repository does not exist (or is invisible to the token)
class NotFoundError(CommitError):
    reason = FailureReason.not_found


# the credential is invalid, expired or lacks access to the repository
class AuthError(CommitError):
    reason = FailureReason.auth


# empty change set, invalid path or oversized content; raised before any request
class ValidationError(CommitError):
    reason = FailureReason.validation


class NetworkError(CommitError):
    reason = FailureReason.network


class RequestTimeout(NetworkError):
    reason = FailureReason.timeout


# the remote refused the commit, e.g. a protected branch
class RemoteRejectedError(CommitError):
    reason = FailureReason.remote_rejected


class ConflictError(CommitError):
    """The expected head oid no longer matches the branch tip."""

    def __init__(self, message: str = "", expected_oid: str = "") -> None:
        super().__init__(message)
        self.expected_oid = expected_oid
