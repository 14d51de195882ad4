"""Cryptographic provider interface.

The provider is the engine that parses keys and certificates, computes
signatures and validates certificate chains. EUSign treats it as an
opaque collaborator: every call returns a ProviderResult carrying the
provider's numeric result code and, on success, the call's output value.

Two implementations exist behind this interface:
- the issuer's certified native library (qualified signatures);
- SoftwareProvider, an in-process non-qualified provider for development.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import Any, Protocol

# Result codes
EU_ERROR_NONE = 0x0000
EU_ERROR_NOT_SUPPORTED = 0x0001
EU_ERROR_NOT_INITIALIZED = 0x0002
EU_ERROR_BAD_PARAMETER = 0x0003
EU_ERROR_LIBRARY_LOAD = 0x0004
EU_ERROR_READ_SETTINGS = 0x0005
EU_ERROR_MEMORY_ALLOCATION = 0x0007
EU_WARNING_END_OF_ENUM = 0x0008
EU_ERROR_KEY_MEDIAS_READ_FAILED = 0x0011
EU_ERROR_BAD_PRIVATE_KEY = 0x0013
EU_ERROR_PKEY_FORMAT = 0x0014
EU_ERROR_BAD_CERT = 0x0021
EU_ERROR_CERT_NOT_FOUND = 0x0033
EU_ERROR_BAD_SIGNATURE = 0x0041
EU_ERROR_JKS_FORMAT = 0x0051
EU_ERROR_UNKNOWN = 0xFFFF

ERROR_DESCRIPTIONS: dict[int, str] = {
    EU_ERROR_NONE: "Помилка відсутня",
    EU_ERROR_NOT_SUPPORTED: "Операція не підтримується",
    EU_ERROR_NOT_INITIALIZED: "Бібліотеку не ініціалізовано",
    EU_ERROR_BAD_PARAMETER: "Невірний параметр",
    EU_ERROR_LIBRARY_LOAD: "Виникла помилка при завантаженні бібліотеки",
    EU_ERROR_READ_SETTINGS: "Виникла помилка при зчитуванні параметрів",
    EU_ERROR_MEMORY_ALLOCATION: "Недостатньо ресурсів",
    EU_WARNING_END_OF_ENUM: "Досягнуто кінця переліку",
    EU_ERROR_KEY_MEDIAS_READ_FAILED: "Виникла помилка при зчитуванні особистого ключа з носія",
    EU_ERROR_BAD_PRIVATE_KEY: "Невірний пароль або пошкоджений особистий ключ",
    EU_ERROR_PKEY_FORMAT: "Невірний формат особистого ключа",
    EU_ERROR_BAD_CERT: "Невірний формат сертифіката",
    EU_ERROR_CERT_NOT_FOUND: "Сертифікат не знайдено",
    EU_ERROR_BAD_SIGNATURE: "Невірний формат підпису",
    EU_ERROR_JKS_FORMAT: "Невірний формат контейнера ключів",
    EU_ERROR_UNKNOWN: "Невідома помилка",
}

# Code page identifier passed to set_charset
EM_ENCODING_UTF8 = 65001

# Runtime parameter controlling OID resolution in parsed structures
EU_RESOLVE_OIDS_PARAMETER = "ResolveOIDs"


class SubjectType(IntEnum):
    """Certificate subject type as reported by parse_certificate."""

    UNDIFFERENCED = 0
    CA = 1
    CA_SERVER = 2
    RA_ADMINISTRATOR = 3
    END_USER = 4


class CtxSignAlgorithm(IntEnum):
    """Algorithm suites for context signing."""

    UNKNOWN = 0
    DSTU4145_WITH_GOST34311 = 1
    RSA_WITH_SHA = 2
    ECDSA_WITH_SHA = 3


@dataclass(frozen=True, slots=True)
class ProviderResult:
    """Outcome of a provider call.

    Attributes:
        code: Provider result code (EU_ERROR_NONE on success).
        value: Output of the call, meaningful only for accepted codes.
    """

    code: int
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.code == EU_ERROR_NONE


@dataclass(frozen=True, slots=True)
class FileStoreSettings:
    """Certificate and CRL file store settings of an initialized provider."""

    path: Path
    check_crls: bool
    auto_refresh: bool
    own_crls_only: bool
    full_and_delta_crls: bool
    auto_download_crls: bool
    save_loaded_certs: bool
    expire_time: int


@dataclass(frozen=True, slots=True)
class CertificateInfo:
    """Parsed certificate metadata.

    Attributes:
        subject: Subject distinguished name.
        issuer: Issuer distinguished name.
        serial: Serial number as uppercase hex.
        subject_type: Role of the certificate subject.
        not_before: Start of the validity period.
        not_after: End of the validity period.
        data: Encoded certificate the metadata was parsed from.
    """

    subject: str
    issuer: str
    serial: str
    subject_type: SubjectType
    not_before: datetime
    not_after: datetime
    data: bytes = field(repr=False)

    @property
    def is_end_user(self) -> bool:
        return self.subject_type == SubjectType.END_USER


@dataclass(frozen=True, slots=True)
class SignerInfo:
    """Metadata about one signer of a signature.

    Attributes:
        issuer: Issuer of the signer certificate.
        serial: Serial of the signer certificate as uppercase hex.
        subject: Subject of the signer certificate, when it is embedded.
        digest_algorithm: Digest algorithm used by the signer.
        certificate: DER signer certificate, when it is embedded.
    """

    issuer: str
    serial: str
    subject: str | None
    digest_algorithm: str
    certificate: bytes | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class SignTimeInfo:
    """Signing time of one signer.

    Attributes:
        sign_time: Time claimed by the signer or attested by a timestamp.
        is_timestamp: True when the time comes from a timestamp token.
    """

    sign_time: datetime
    is_timestamp: bool = False


@dataclass(frozen=True, slots=True)
class KeyStoreEntry:
    """Private key extracted from a key store together with its certificates."""

    alias: str
    key_data: bytes = field(repr=False)
    certificates: tuple[bytes, ...] = field(default=(), repr=False)


class Provider(Protocol):
    """Operations consumed from a cryptographic provider.

    Handles returned by ctx_create and ctx_read_private_key_binary are
    opaque and only meaningful to the provider that issued them.
    """

    def set_charset(self, charset: int) -> ProviderResult: ...

    def initialize(self) -> ProviderResult: ...

    def finalize(self) -> None: ...

    def describe_error(self, code: int) -> str | bytes: ...

    def get_file_store_settings(self) -> ProviderResult: ...

    def read_private_key_binary(self, key_data: bytes, password: str) -> ProviderResult: ...

    def is_private_key_read(self) -> ProviderResult: ...

    def reset_private_key(self) -> ProviderResult: ...

    def set_runtime_parameter(self, name: str, value: Any) -> ProviderResult: ...

    def enum_jks_private_keys(self, store_data: bytes, index: int) -> ProviderResult: ...

    def get_jks_private_key(self, store_data: bytes, alias: str) -> ProviderResult: ...

    def parse_certificate(self, data: bytes) -> ProviderResult: ...

    def ctx_create(self) -> ProviderResult: ...

    def ctx_read_private_key_binary(
        self, context: Any, key_data: bytes, password: str
    ) -> ProviderResult: ...

    def ctx_sign_data(
        self,
        key_context: Any,
        algorithm: CtxSignAlgorithm,
        data: bytes,
        external: bool,
        append_cert: bool,
    ) -> ProviderResult: ...

    def ctx_is_already_signed(
        self, key_context: Any, algorithm: CtxSignAlgorithm, signature: bytes
    ) -> ProviderResult: ...

    def ctx_free_private_key(self, key_context: Any) -> ProviderResult: ...

    def ctx_free(self, context: Any) -> ProviderResult: ...

    def get_signs_count(self, signature: bytes) -> ProviderResult: ...

    def get_signer_info(self, signature: bytes, index: int) -> ProviderResult: ...

    def get_sign_time_info(self, signature: bytes, index: int) -> ProviderResult: ...


def decode_description(raw: str | bytes, fallback_charset: str = "cp1251") -> str:
    """Normalize a provider error description to text.

    Descriptions arrive either as text or as bytes in the provider's
    native charset; bytes are tried as UTF-8 first.
    """
    if isinstance(raw, str):
        return raw
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode(fallback_charset, errors="replace")
