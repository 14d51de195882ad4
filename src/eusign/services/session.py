"""Signing session over a cryptographic provider.

A SigningSession owns one provider context and moves through these states:

    CLOSED --open()--> OPEN --read_private_key()--> KEY_LOADED
    KEY_LOADED --reset_private_key()--> OPEN
    any --close()--> CLOSED

Every provider call is checked against the result codes it may return.
Any other code becomes the operation's error type, carrying the code and
the provider's decoded description.

Sessions are not thread-safe. Use one session per worker thread or
process; the provider itself is assumed not to be safe for concurrent use.

Example:
    with SigningSession(provider) as session:
        signature = session.sign(document, key_data, password)
        assert session.count_signers(signature) == 1
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Self

from eusign.errors import (
    ExtractError,
    ParseError,
    ProviderError,
    ReadKeyError,
    ResetKeyError,
    SessionError,
    SessionStateError,
    SignerCountError,
    SignerInfoError,
    SignError,
    SignTimeError,
)
from eusign.services.provider import (
    EM_ENCODING_UTF8,
    EU_ERROR_NONE,
    EU_RESOLVE_OIDS_PARAMETER,
    EU_WARNING_END_OF_ENUM,
    CertificateInfo,
    CtxSignAlgorithm,
    FileStoreSettings,
    Provider,
    ProviderResult,
    SignerInfo,
    SignTimeInfo,
    SubjectType,
    decode_description,
)

if TYPE_CHECKING:
    from types import TracebackType

    from eusign.core.config import ProviderSettings

logger = logging.getLogger(__name__)

SUCCESS_ONLY = frozenset({EU_ERROR_NONE})
ENUMERATION_CODES = frozenset({EU_ERROR_NONE, EU_WARNING_END_OF_ENUM})


class SessionState(str, Enum):
    """Lifecycle state of a signing session."""

    CLOSED = "closed"
    OPEN = "open"
    KEY_LOADED = "key_loaded"


OPEN_STATES = frozenset({SessionState.OPEN, SessionState.KEY_LOADED})


@dataclass
class _SigningHandles:
    """Provider handles owned by one sign() call."""

    context: Any
    key_context: Any = None


class SigningSession:
    """Stateful client for a provider session."""

    def __init__(
        self,
        provider: Provider,
        *,
        sign_algorithm: CtxSignAlgorithm = CtxSignAlgorithm.DSTU4145_WITH_GOST34311,
        error_charset: str = "cp1251",
    ) -> None:
        """Initialize a closed session.

        Args:
            provider: Provider performing the cryptographic operations.
            sign_algorithm: Algorithm suite used by sign().
            error_charset: Charset of provider descriptions that are not UTF-8.
        """
        self._provider = provider
        self._sign_algorithm = sign_algorithm
        self._error_charset = error_charset
        self._state = SessionState.CLOSED
        self._oid_resolution_disabled = False

    @classmethod
    def from_settings(cls, provider: Provider, settings: ProviderSettings) -> SigningSession:
        """Create a session configured from ProviderSettings."""
        return cls(
            provider,
            sign_algorithm=settings.sign_algorithm,
            error_charset=settings.error_charset,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state in OPEN_STATES

    def __enter__(self) -> Self:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Negotiate UTF-8 with the provider and initialize it.

        Raises:
            SessionStateError: If the session is already open.
            SessionError: If the provider rejects the charset or fails to
                initialize.
        """
        self._require({SessionState.CLOSED}, "open")
        self._check("set_charset", self._provider.set_charset(EM_ENCODING_UTF8), SessionError)
        self._check("initialize", self._provider.initialize(), SessionError)
        self._state = SessionState.OPEN
        logger.debug("Provider session opened")

    def close(self) -> None:
        """Release the provider context. Never raises."""
        try:
            self._provider.finalize()
        except Exception as e:
            logger.warning("Provider finalize failed: %s", e)
        self._state = SessionState.CLOSED
        self._oid_resolution_disabled = False
        logger.debug("Provider session closed")

    def file_store_settings(self) -> FileStoreSettings:
        """Get the file store settings the provider was initialized with.

        Raises:
            SessionError: If the provider cannot report its settings.
        """
        self._require(OPEN_STATES, "file_store_settings")
        result = self._check(
            "get_file_store_settings",
            self._provider.get_file_store_settings(),
            SessionError,
        )
        return result.value

    # ------------------------------------------------------------------
    # Session private key
    # ------------------------------------------------------------------

    def read_private_key(self, key_data: bytes, password: str) -> None:
        """Load a private key into the session.

        Raises:
            ReadKeyError: If the provider cannot read the key or reports it
                as not read afterwards.
        """
        self._require(OPEN_STATES, "read_private_key")
        self._check(
            "read_private_key_binary",
            self._provider.read_private_key_binary(key_data, password),
            ReadKeyError,
        )
        result = self._check(
            "is_private_key_read",
            self._provider.is_private_key_read(),
            ReadKeyError,
        )
        if not result.value:
            raise ReadKeyError("Private key was not read.", command="is_private_key_read")
        self._state = SessionState.KEY_LOADED
        logger.debug("Private key loaded into session")

    def reset_private_key(self) -> None:
        """Clear the loaded private key.

        Raises:
            ResetKeyError: If the provider fails to reset the key.
        """
        self._require(OPEN_STATES, "reset_private_key")
        self._check("reset_private_key", self._provider.reset_private_key(), ResetKeyError)
        self._state = SessionState.OPEN
        logger.debug("Private key reset")

    # ------------------------------------------------------------------
    # Key stores and certificates
    # ------------------------------------------------------------------

    def iter_key_store_entries(self, store_data: bytes) -> Iterator[tuple[str, bytes]]:
        """Lazily enumerate `(alias, key_data)` pairs of a key store.

        Enumeration runs from index 0 until the provider answers with the
        end-of-enumeration warning. A fresh call restarts from index 0.

        Raises:
            ExtractError: If any enumeration or extraction call fails.
        """
        self._require(OPEN_STATES, "enumerate_key_store_entries")
        self._disable_oid_resolution()

        index = 0
        while True:
            result = self._check(
                "enum_jks_private_keys",
                self._provider.enum_jks_private_keys(store_data, index),
                ExtractError,
                ENUMERATION_CODES,
            )
            if result.code == EU_WARNING_END_OF_ENUM:
                logger.debug("Key store enumeration finished after %d entries", index)
                return
            alias = result.value
            entry = self._check(
                "get_jks_private_key",
                self._provider.get_jks_private_key(store_data, alias),
                ExtractError,
            ).value
            yield alias, entry.key_data
            index += 1

    def enumerate_key_store_entries(self, store_data: bytes) -> dict[str, bytes]:
        """Extract all private keys of a key store, keyed by alias.

        Raises:
            ExtractError: If any enumeration or extraction call fails.
        """
        return dict(self.iter_key_store_entries(store_data))

    def parse_certificates(self, certificates: Iterable[bytes]) -> list[CertificateInfo]:
        """Parse certificates, keeping end-user certificates only.

        A single malformed certificate fails the whole batch.

        Raises:
            ParseError: If any certificate cannot be parsed.
        """
        parsed = []
        for data in certificates:
            info = self._check(
                "parse_certificate",
                self._provider.parse_certificate(data),
                ParseError,
            ).value
            if info.subject_type != SubjectType.END_USER:
                continue
            parsed.append(info)
        return parsed

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(
        self,
        data: bytes,
        key_data: bytes,
        password: str,
        external: bool = False,
        append_cert: bool = True,
    ) -> bytes:
        """Sign data with a key loaded into a dedicated signing context.

        Args:
            data: Content to sign.
            key_data: Private key blob.
            password: Private key password.
            external: Produce a detached signature.
            append_cert: Embed the signer certificate in the signature.

        Returns:
            Encoded signature.

        Raises:
            ReadKeyError: If the context cannot be created or the key read.
            SignError: If signing fails or the result does not check out.
        """
        self._require(OPEN_STATES, "sign")
        algorithm = self._sign_algorithm

        with self._signing_context() as handles:
            handles.key_context = self._check(
                "ctx_read_private_key_binary",
                self._provider.ctx_read_private_key_binary(handles.context, key_data, password),
                ReadKeyError,
            ).value
            signature = self._check(
                "ctx_sign_data",
                self._provider.ctx_sign_data(
                    handles.key_context, algorithm, data, external, append_cert
                ),
                SignError,
            ).value
            signed = self._check(
                "ctx_is_already_signed",
                self._provider.ctx_is_already_signed(handles.key_context, algorithm, signature),
                SignError,
            ).value
            if not signed:
                raise SignError("Content not signed properly.", command="ctx_is_already_signed")

        logger.debug(
            "Signed %d bytes (algorithm=%s, external=%s)",
            len(data),
            algorithm.name,
            external,
        )
        return signature

    @contextmanager
    def _signing_context(self) -> Iterator[_SigningHandles]:
        """Create a signing context and free it on every exit path."""
        result = self._check("ctx_create", self._provider.ctx_create(), ReadKeyError)
        handles = _SigningHandles(context=result.value)
        try:
            yield handles
        except BaseException:
            self._release(handles, strict=False)
            raise
        self._release(handles, strict=True)

    def _release(self, handles: _SigningHandles, *, strict: bool) -> None:
        """Free the key context and the signing context.

        With strict=False, failures are logged so that the error already
        propagating from sign() is not replaced.
        """
        calls = []
        if handles.key_context is not None:
            calls.append(
                ("ctx_free_private_key", self._provider.ctx_free_private_key, handles.key_context)
            )
        calls.append(("ctx_free", self._provider.ctx_free, handles.context))

        failure: ProviderError | None = None
        for command, release, handle in calls:
            try:
                self._check(command, release(handle), SignError)
            except SignError as e:
                logger.warning("Failed to release signing context: %s", e)
                failure = failure or e
        if strict and failure is not None:
            raise failure

    # ------------------------------------------------------------------
    # Signature introspection
    # ------------------------------------------------------------------

    def count_signers(self, signature: bytes) -> int:
        """Get the number of signers of a signature.

        Raises:
            SignerCountError: If the signature cannot be read.
        """
        return self._check(
            "get_signs_count",
            self._provider.get_signs_count(signature),
            SignerCountError,
        ).value

    def signer_info(self, signature: bytes, index: int) -> SignerInfo:
        """Get metadata for the signer at `index`.

        Raises:
            SignerInfoError: If the signer cannot be read.
        """
        return self._check(
            "get_signer_info",
            self._provider.get_signer_info(signature, index),
            SignerInfoError,
        ).value

    def sign_time(self, signature: bytes, index: int) -> SignTimeInfo | None:
        """Get the signing time of the signer at `index`, if recorded.

        Raises:
            SignTimeError: If the signature cannot be read.
        """
        return self._check(
            "get_sign_time_info",
            self._provider.get_sign_time_info(signature, index),
            SignTimeError,
        ).value

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(
        self,
        allowed: frozenset[SessionState] | set[SessionState],
        operation: str,
    ) -> None:
        if self._state not in allowed:
            msg = f"Operation '{operation}' is not allowed in session state {self._state.value}"
            raise SessionStateError(msg, command=operation)

    def _disable_oid_resolution(self) -> None:
        """Switch off OID resolution once per open session."""
        if self._oid_resolution_disabled:
            return
        self._check(
            "set_runtime_parameter",
            self._provider.set_runtime_parameter(EU_RESOLVE_OIDS_PARAMETER, False),
            ExtractError,
        )
        self._oid_resolution_disabled = True

    def _check(
        self,
        command: str,
        result: ProviderResult,
        error_cls: type[ProviderError],
        acceptable: frozenset[int] = SUCCESS_ONLY,
    ) -> ProviderResult:
        """Translate an unacceptable result code into `error_cls`."""
        if result.code in acceptable:
            return result

        description = decode_description(
            self._provider.describe_error(result.code),
            self._error_charset,
        )
        logger.warning(
            "Provider command %s failed: code=0x%04X (%s)",
            command,
            result.code,
            description,
        )
        msg = f"Code: 0x{result.code:04X} Command: {command} Error: {description}"
        raise error_cls(msg, command=command, code=result.code, description=description)
