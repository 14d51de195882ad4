"""Registry of supported certificate issuers.

Issuers (qualified trust service providers) are identified by the host
name of their certificate server. Only these hosts get a provider
configuration; adding an issuer means adding an entry here and a
<host>.dist.ini template.
"""

from __future__ import annotations

from pathlib import Path
from types import MappingProxyType

PRIVATBANK = "acsk.privatbank.ua"
IDD = "acskidd.gov.ua"
IIT = "ca.iit.com.ua"
K_SYSTEMS = "ca.ksystems.com.ua"

KNOWN_ISSUERS: MappingProxyType[str, str] = MappingProxyType(
    {
        PRIVATBANK: "АЦСК АТ КБ «ПРИВАТБАНК»",
        IDD: "КНЕДП - ІДД ДПС",
        IIT: "АТ «ІНСТИТУТ ІНФОРМАЦІЙНИХ ТЕХНОЛОГІЙ»",
        K_SYSTEMS: "АЦСК ТОВ «Ключові системи»",
    }
)

TEMPLATE_SUFFIX = ".dist.ini"


def is_known_issuer(host: str) -> bool:
    """Check whether `host` belongs to a supported issuer."""
    return host in KNOWN_ISSUERS


def display_name(host: str) -> str | None:
    """Get the issuer display name, or None for unknown hosts."""
    return KNOWN_ISSUERS.get(host)


def known_issuers() -> tuple[str, ...]:
    """Get the host keys of all supported issuers."""
    return tuple(KNOWN_ISSUERS)


def template_filename(host: str) -> str:
    """Get the template file name for an issuer host."""
    return f"{host}{TEMPLATE_SUFFIX}"


def template_path(templates_dir: Path, host: str) -> Path:
    """Get the template location for an issuer host under `templates_dir`."""
    return templates_dir / template_filename(host)
