"""Exception taxonomy for EUSign.

Storage errors describe problems with the on-disk caches and carry the
offending path. Provider errors describe a failed provider call and carry
the command name, the numeric result code and the provider's own
description of that code.
"""

from __future__ import annotations


class EUSignError(Exception):
    """Base exception for all EUSign errors."""


class StorageError(EUSignError):
    """Base exception for certificate and configuration storage.

    Attributes:
        message: Human-readable error description.
        path: Filesystem path involved in the failure (if known).
    """

    def __init__(self, message: str, *, path: str | None = None) -> None:
        """Initialize storage error with context.

        Args:
            message: Error description.
            path: Directory or file path (if applicable).
        """
        self.message = message
        self.path = path
        super().__init__(message)


class DirectoryError(StorageError):
    """Raised when a cache directory is missing, uncreatable or unresolvable."""


class LoadError(StorageError):
    """Raised when no certificate files are found while loading."""


class IssuerError(EUSignError):
    """Raised for an unknown issuer host or a missing issuer template."""

    def __init__(self, message: str, *, host: str | None = None) -> None:
        self.message = message
        self.host = host
        super().__init__(message)


class ProviderError(EUSignError):
    """Base exception for failed cryptographic provider operations.

    Attributes:
        message: Human-readable error description.
        command: Provider command that failed.
        code: Provider result code (None for post-condition failures).
        description: Provider description of the result code.
    """

    def __init__(
        self,
        message: str,
        *,
        command: str | None = None,
        code: int | None = None,
        description: str | None = None,
    ) -> None:
        """Initialize provider error with context.

        Args:
            message: Error description.
            command: Name of the provider command.
            code: Numeric provider result code.
            description: Decoded provider description of the code.
        """
        self.message = message
        self.command = command
        self.code = code
        self.description = description
        super().__init__(message)


class SessionError(ProviderError):
    """Raised when the provider session cannot be initialized."""


class SessionStateError(SessionError):
    """Raised when an operation is called in the wrong session state."""


class ReadKeyError(ProviderError):
    """Raised when a private key cannot be read."""


class ResetKeyError(ProviderError):
    """Raised when loaded key material cannot be reset."""


class ExtractError(ProviderError):
    """Raised when key-store entries cannot be enumerated or extracted."""


class ParseError(ProviderError):
    """Raised when a certificate in a batch cannot be parsed."""


class SignError(ProviderError):
    """Raised when signing or the post-signature check fails."""


class SignerCountError(ProviderError):
    """Raised when the signer count of a signature cannot be read."""


class SignerInfoError(ProviderError):
    """Raised when signer metadata cannot be read."""


class SignTimeError(ProviderError):
    """Raised when signing time metadata cannot be read."""
