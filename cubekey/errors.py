"""Typed errors raised by the authenticator core."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NO_CREDENTIALS_AVAILABLE = "NoCredentialsAvailable"
    ORIGIN_MISMATCH = "OriginMismatch"
    INVALID_OPTIONS = "InvalidOptions"
    DERIVATION_UNAVAILABLE = "DerivationUnavailable"
    USER_CANCELLED = "UserCancelled"
    PHYSICAL_STATE_REJECTED = "PhysicalStateRejected"
    ENCODING_ERROR = "EncodingError"


class AuthenticatorError(RuntimeError):
    """Base class for every error the engine reports to its callers."""

    kind: ErrorKind = ErrorKind.ENCODING_ERROR


class NoCredentialsAvailable(AuthenticatorError):
    kind = ErrorKind.NO_CREDENTIALS_AVAILABLE


class OriginMismatch(AuthenticatorError):
    kind = ErrorKind.ORIGIN_MISMATCH


class InvalidOptions(AuthenticatorError):
    kind = ErrorKind.INVALID_OPTIONS


class InvalidChallenge(InvalidOptions):
    pass


class InvalidRpId(InvalidOptions):
    pass


class DerivationUnavailable(AuthenticatorError):
    kind = ErrorKind.DERIVATION_UNAVAILABLE


class UserCancelled(AuthenticatorError):
    kind = ErrorKind.USER_CANCELLED


class PhysicalStateRejected(AuthenticatorError):
    kind = ErrorKind.PHYSICAL_STATE_REJECTED


class EncodingError(AuthenticatorError):
    kind = ErrorKind.ENCODING_ERROR
