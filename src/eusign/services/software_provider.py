"""Non-qualified in-process provider.

SoftwareProvider implements the Provider interface with software keys so
that sessions can run without the issuer's native library, e.g. in
development and tests. Its outputs are ordinary CMS signatures and are
NOT qualified electronic signatures.

Formats:
- private key blob: PKCS#12 bundle (key + certificate), password protected;
- key store: ZIP archive of <alias>.p12 members, optionally with
  <alias>.cer certificates, enumerated in member name order;
- signature: DER-encoded CMS SignedData;
- certificate: DER or PEM X.509, CA iff BasicConstraints has ca=True.
"""

from __future__ import annotations

import hmac
import io
import itertools
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from asn1crypto import cms
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7, pkcs12

from eusign.services.provider import (
    EM_ENCODING_UTF8,
    ERROR_DESCRIPTIONS,
    EU_ERROR_BAD_CERT,
    EU_ERROR_BAD_PARAMETER,
    EU_ERROR_BAD_PRIVATE_KEY,
    EU_ERROR_BAD_SIGNATURE,
    EU_ERROR_CERT_NOT_FOUND,
    EU_ERROR_JKS_FORMAT,
    EU_ERROR_NONE,
    EU_ERROR_NOT_INITIALIZED,
    EU_ERROR_NOT_SUPPORTED,
    EU_ERROR_UNKNOWN,
    EU_WARNING_END_OF_ENUM,
    CertificateInfo,
    CtxSignAlgorithm,
    FileStoreSettings,
    KeyStoreEntry,
    ProviderResult,
    SignerInfo,
    SignTimeInfo,
    SubjectType,
)

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

logger = logging.getLogger(__name__)

KEY_STORE_MEMBER_SUFFIX = ".p12"
KEY_STORE_CERT_SUFFIX = ".cer"

_DIGESTS = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


@dataclass(frozen=True, slots=True)
class _LoadedKey:
    private_key: PrivateKeyTypes
    certificate: x509.Certificate


def _hex_serial(serial: int) -> str:
    return format(serial, "X")


def _load_key(key_data: bytes, password: str) -> _LoadedKey | None:
    """Load a PKCS#12 key blob, returning None when it cannot be read."""
    try:
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            key_data, password.encode("utf-8") if password else None
        )
    except (ValueError, TypeError):
        return None
    if private_key is None or certificate is None:
        return None
    return _LoadedKey(private_key=private_key, certificate=certificate)


def _load_certificate(data: bytes) -> x509.Certificate:
    if data.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def _load_signed_data(signature: bytes) -> cms.SignedData | None:
    """Parse CMS SignedData, returning None for anything else."""
    try:
        content_info = cms.ContentInfo.load(signature)
        if content_info["content_type"].native != "signed_data":
            return None
        signed_data = content_info["content"]
        # Force a full parse so malformed input is detected here
        signed_data["signer_infos"].native  # noqa: B018
    except (ValueError, TypeError):
        return None
    return signed_data


def _digest_matches(
    signer_info: cms.SignerInfo,
    digest_cls: type[hashes.HashAlgorithm],
    content: bytes,
) -> bool:
    """Compare the signed message digest attribute with the content digest."""
    expected = None
    for attribute in signer_info["signed_attrs"]:
        if attribute["type"].native == "message_digest":
            expected = attribute["values"][0].native
            break
    if expected is None:
        return False

    digest = hashes.Hash(digest_cls())
    digest.update(content)
    return hmac.compare_digest(digest.finalize(), expected)


class SoftwareProvider:
    """Provider backed by `cryptography` software keys.

    Context handles are integers. open_context_count and
    open_key_context_count expose outstanding handles so callers can
    verify that sessions release everything they allocate.
    """

    def __init__(
        self,
        *,
        file_store_path: Path | None = None,
        description_charset: str = "utf-8",
    ) -> None:
        """Initialize the provider.

        Args:
            file_store_path: Path reported by get_file_store_settings().
            description_charset: Charset used to encode error descriptions.
        """
        self._file_store_path = file_store_path or Path(".")
        self._description_charset = description_charset
        self._charset: int | None = None
        self._initialized = False
        self._runtime_parameters: dict[str, Any] = {}
        self._key: _LoadedKey | None = None
        self._handles = itertools.count(1)
        self._contexts: set[int] = set()
        self._key_contexts: dict[int, tuple[int, _LoadedKey]] = {}

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def runtime_parameters(self) -> dict[str, Any]:
        return dict(self._runtime_parameters)

    @property
    def open_context_count(self) -> int:
        return len(self._contexts)

    @property
    def open_key_context_count(self) -> int:
        return len(self._key_contexts)

    # Session

    def set_charset(self, charset: int) -> ProviderResult:
        if charset != EM_ENCODING_UTF8:
            return ProviderResult(EU_ERROR_NOT_SUPPORTED)
        self._charset = charset
        return ProviderResult(EU_ERROR_NONE)

    def initialize(self) -> ProviderResult:
        if self._charset is None:
            return ProviderResult(EU_ERROR_BAD_PARAMETER)
        self._initialized = True
        logger.info("Software provider initialized (non-qualified)")
        return ProviderResult(EU_ERROR_NONE)

    def finalize(self) -> None:
        if self._contexts or self._key_contexts:
            logger.warning(
                "Finalizing with %d open contexts and %d open key contexts",
                len(self._contexts),
                len(self._key_contexts),
            )
        self._initialized = False
        self._charset = None
        self._runtime_parameters.clear()
        self._key = None
        self._contexts.clear()
        self._key_contexts.clear()

    def describe_error(self, code: int) -> bytes:
        description = ERROR_DESCRIPTIONS.get(code, ERROR_DESCRIPTIONS[EU_ERROR_UNKNOWN])
        return description.encode(self._description_charset, errors="replace")

    def get_file_store_settings(self) -> ProviderResult:
        if not self._initialized:
            return ProviderResult(EU_ERROR_NOT_INITIALIZED)
        return ProviderResult(
            EU_ERROR_NONE,
            FileStoreSettings(
                path=self._file_store_path,
                check_crls=False,
                auto_refresh=False,
                own_crls_only=False,
                full_and_delta_crls=False,
                auto_download_crls=False,
                save_loaded_certs=False,
                expire_time=3600,
            ),
        )

    def set_runtime_parameter(self, name: str, value: Any) -> ProviderResult:
        if not self._initialized:
            return ProviderResult(EU_ERROR_NOT_INITIALIZED)
        self._runtime_parameters[name] = value
        return ProviderResult(EU_ERROR_NONE)

    # Session private key

    def read_private_key_binary(self, key_data: bytes, password: str) -> ProviderResult:
        if not self._initialized:
            return ProviderResult(EU_ERROR_NOT_INITIALIZED)
        loaded = _load_key(key_data, password)
        if loaded is None:
            return ProviderResult(EU_ERROR_BAD_PRIVATE_KEY)
        self._key = loaded
        return ProviderResult(EU_ERROR_NONE)

    def is_private_key_read(self) -> ProviderResult:
        if not self._initialized:
            return ProviderResult(EU_ERROR_NOT_INITIALIZED)
        return ProviderResult(EU_ERROR_NONE, self._key is not None)

    def reset_private_key(self) -> ProviderResult:
        if not self._initialized:
            return ProviderResult(EU_ERROR_NOT_INITIALIZED)
        self._key = None
        return ProviderResult(EU_ERROR_NONE)

    # Key stores

    def _key_store_aliases(self, archive: zipfile.ZipFile) -> list[str]:
        names = sorted(n for n in archive.namelist() if n.endswith(KEY_STORE_MEMBER_SUFFIX))
        return [name[: -len(KEY_STORE_MEMBER_SUFFIX)] for name in names]

    def enum_jks_private_keys(self, store_data: bytes, index: int) -> ProviderResult:
        if not self._initialized:
            return ProviderResult(EU_ERROR_NOT_INITIALIZED)
        if index < 0:
            return ProviderResult(EU_ERROR_BAD_PARAMETER)
        try:
            with zipfile.ZipFile(io.BytesIO(store_data)) as archive:
                aliases = self._key_store_aliases(archive)
        except zipfile.BadZipFile:
            return ProviderResult(EU_ERROR_JKS_FORMAT)
        if index >= len(aliases):
            return ProviderResult(EU_WARNING_END_OF_ENUM)
        return ProviderResult(EU_ERROR_NONE, aliases[index])

    def get_jks_private_key(self, store_data: bytes, alias: str) -> ProviderResult:
        if not self._initialized:
            return ProviderResult(EU_ERROR_NOT_INITIALIZED)
        try:
            with zipfile.ZipFile(io.BytesIO(store_data)) as archive:
                names = set(archive.namelist())
                member = alias + KEY_STORE_MEMBER_SUFFIX
                if member not in names:
                    return ProviderResult(EU_ERROR_BAD_PARAMETER)
                key_data = archive.read(member)
                cert_member = alias + KEY_STORE_CERT_SUFFIX
                certificates = (archive.read(cert_member),) if cert_member in names else ()
        except zipfile.BadZipFile:
            return ProviderResult(EU_ERROR_JKS_FORMAT)
        return ProviderResult(
            EU_ERROR_NONE,
            KeyStoreEntry(alias=alias, key_data=key_data, certificates=certificates),
        )

    # Certificates

    def parse_certificate(self, data: bytes) -> ProviderResult:
        try:
            certificate = _load_certificate(data)
        except ValueError:
            return ProviderResult(EU_ERROR_BAD_CERT)

        try:
            constraints = certificate.extensions.get_extension_for_class(x509.BasicConstraints)
            is_ca = constraints.value.ca
        except x509.ExtensionNotFound:
            is_ca = False

        return ProviderResult(
            EU_ERROR_NONE,
            CertificateInfo(
                subject=certificate.subject.rfc4514_string(),
                issuer=certificate.issuer.rfc4514_string(),
                serial=_hex_serial(certificate.serial_number),
                subject_type=SubjectType.CA if is_ca else SubjectType.END_USER,
                not_before=certificate.not_valid_before_utc,
                not_after=certificate.not_valid_after_utc,
                data=certificate.public_bytes(Encoding.DER),
            ),
        )

    # Signing contexts

    def ctx_create(self) -> ProviderResult:
        if not self._initialized:
            return ProviderResult(EU_ERROR_NOT_INITIALIZED)
        handle = next(self._handles)
        self._contexts.add(handle)
        return ProviderResult(EU_ERROR_NONE, handle)

    def ctx_read_private_key_binary(
        self, context: Any, key_data: bytes, password: str
    ) -> ProviderResult:
        if context not in self._contexts:
            return ProviderResult(EU_ERROR_BAD_PARAMETER)
        loaded = _load_key(key_data, password)
        if loaded is None:
            return ProviderResult(EU_ERROR_BAD_PRIVATE_KEY)
        handle = next(self._handles)
        self._key_contexts[handle] = (context, loaded)
        return ProviderResult(EU_ERROR_NONE, handle)

    def _check_algorithm(self, key: PrivateKeyTypes, algorithm: CtxSignAlgorithm) -> int:
        if algorithm == CtxSignAlgorithm.RSA_WITH_SHA and isinstance(key, rsa.RSAPrivateKey):
            return EU_ERROR_NONE
        if algorithm == CtxSignAlgorithm.ECDSA_WITH_SHA and isinstance(
            key, ec.EllipticCurvePrivateKey
        ):
            return EU_ERROR_NONE
        if algorithm in (CtxSignAlgorithm.RSA_WITH_SHA, CtxSignAlgorithm.ECDSA_WITH_SHA):
            return EU_ERROR_BAD_PARAMETER
        return EU_ERROR_NOT_SUPPORTED

    def ctx_sign_data(
        self,
        key_context: Any,
        algorithm: CtxSignAlgorithm,
        data: bytes,
        external: bool,
        append_cert: bool,
    ) -> ProviderResult:
        if key_context not in self._key_contexts:
            return ProviderResult(EU_ERROR_BAD_PARAMETER)
        _, loaded = self._key_contexts[key_context]
        code = self._check_algorithm(loaded.private_key, algorithm)
        if code != EU_ERROR_NONE:
            return ProviderResult(code)

        options = [pkcs7.PKCS7Options.Binary]
        if external:
            options.append(pkcs7.PKCS7Options.DetachedSignature)
        if not append_cert:
            options.append(pkcs7.PKCS7Options.NoCerts)

        signature = (
            pkcs7.PKCS7SignatureBuilder()
            .set_data(data)
            .add_signer(loaded.certificate, loaded.private_key, hashes.SHA256())
            .sign(Encoding.DER, options)
        )
        return ProviderResult(EU_ERROR_NONE, signature)

    def ctx_is_already_signed(
        self, key_context: Any, algorithm: CtxSignAlgorithm, signature: bytes
    ) -> ProviderResult:
        if key_context not in self._key_contexts:
            return ProviderResult(EU_ERROR_BAD_PARAMETER)
        _, loaded = self._key_contexts[key_context]
        signed_data = _load_signed_data(signature)
        if signed_data is None:
            return ProviderResult(EU_ERROR_BAD_SIGNATURE)

        content = signed_data["encap_content_info"]["content"].native
        issuer = asn1_x509.Name.load(loaded.certificate.issuer.public_bytes())
        for signer_info in signed_data["signer_infos"]:
            sid = signer_info["sid"]
            if sid.name != "issuer_and_serial_number":
                continue
            if sid.chosen["serial_number"].native != loaded.certificate.serial_number:
                continue
            if sid.chosen["issuer"] != issuer:
                continue
            if self._verify_signer(signer_info, loaded.certificate, content):
                return ProviderResult(EU_ERROR_NONE, True)
        return ProviderResult(EU_ERROR_NONE, False)

    def _verify_signer(
        self,
        signer_info: cms.SignerInfo,
        certificate: x509.Certificate,
        content: bytes | None,
    ) -> bool:
        """Verify a signer's signature over its signed attributes.

        For attached signatures the message digest attribute must also
        match the encapsulated content. Detached signatures carry no
        content, so only the attribute signature is checked.
        """
        digest_cls = _DIGESTS.get(signer_info["digest_algorithm"]["algorithm"].native)
        if digest_cls is None or not signer_info["signed_attrs"]:
            return False
        if content is not None and not _digest_matches(signer_info, digest_cls, content):
            return False
        # Signed attributes are signed as a SET, not with their [0] tag
        signed_blob = b"\x31" + signer_info["signed_attrs"].dump()[1:]
        raw_signature = signer_info["signature"].native

        public_key = certificate.public_key()
        try:
            if isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(raw_signature, signed_blob, padding.PKCS1v15(), digest_cls())
            elif isinstance(public_key, ec.EllipticCurvePublicKey):
                public_key.verify(raw_signature, signed_blob, ec.ECDSA(digest_cls()))
            else:
                return False
        except InvalidSignature:
            return False
        return True

    def ctx_free_private_key(self, key_context: Any) -> ProviderResult:
        if self._key_contexts.pop(key_context, None) is None:
            return ProviderResult(EU_ERROR_BAD_PARAMETER)
        return ProviderResult(EU_ERROR_NONE)

    def ctx_free(self, context: Any) -> ProviderResult:
        if context not in self._contexts:
            return ProviderResult(EU_ERROR_BAD_PARAMETER)
        self._contexts.discard(context)
        for handle in [h for h, (ctx, _) in self._key_contexts.items() if ctx == context]:
            del self._key_contexts[handle]
        return ProviderResult(EU_ERROR_NONE)

    # Signature introspection

    def _signer_infos(self, signature: bytes) -> cms.SignerInfos | None:
        signed_data = _load_signed_data(signature)
        return None if signed_data is None else signed_data["signer_infos"]

    def get_signs_count(self, signature: bytes) -> ProviderResult:
        signer_infos = self._signer_infos(signature)
        if signer_infos is None:
            return ProviderResult(EU_ERROR_BAD_SIGNATURE)
        return ProviderResult(EU_ERROR_NONE, len(signer_infos))

    def get_signer_info(self, signature: bytes, index: int) -> ProviderResult:
        signed_data = _load_signed_data(signature)
        if signed_data is None:
            return ProviderResult(EU_ERROR_BAD_SIGNATURE)
        signer_infos = signed_data["signer_infos"]
        if not 0 <= index < len(signer_infos):
            return ProviderResult(EU_ERROR_BAD_PARAMETER)

        sid = signer_infos[index]["sid"]
        if sid.name != "issuer_and_serial_number":
            return ProviderResult(EU_ERROR_CERT_NOT_FOUND)
        issuer = sid.chosen["issuer"]
        serial = sid.chosen["serial_number"].native

        subject = None
        certificate = None
        for choice in signed_data["certificates"] or ():
            if choice.name != "certificate":
                continue
            candidate = choice.chosen
            if candidate.serial_number == serial and candidate.issuer == issuer:
                subject = candidate.subject.human_friendly
                certificate = candidate.dump()
                break

        return ProviderResult(
            EU_ERROR_NONE,
            SignerInfo(
                issuer=issuer.human_friendly,
                serial=_hex_serial(serial),
                subject=subject,
                digest_algorithm=signer_infos[index]["digest_algorithm"]["algorithm"].native,
                certificate=certificate,
            ),
        )

    def get_sign_time_info(self, signature: bytes, index: int) -> ProviderResult:
        signer_infos = self._signer_infos(signature)
        if signer_infos is None:
            return ProviderResult(EU_ERROR_BAD_SIGNATURE)
        if not 0 <= index < len(signer_infos):
            return ProviderResult(EU_ERROR_BAD_PARAMETER)

        for attribute in signer_infos[index]["signed_attrs"] or ():
            if attribute["type"].native == "signing_time":
                return ProviderResult(
                    EU_ERROR_NONE,
                    SignTimeInfo(sign_time=attribute["values"][0].native, is_timestamp=False),
                )
        return ProviderResult(EU_ERROR_NONE, None)
