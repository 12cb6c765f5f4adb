"""Map installed Libreswan versions to the configuration syntax they accept."""

from __future__ import annotations

import re

from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict

from ikev2vpn.exceptions import PreconditionError
from ikev2vpn.models.enums import DnsStyle

VERSION_OUTPUT_RE = re.compile(r"Libreswan\s+(\S+)")


class SwanCapabilities(BaseModel):
    """Configuration features available for a Libreswan version."""

    model_config = ConfigDict(frozen=True)

    dns_style: DnsStyle
    # The 'mobike=' option is understood by the daemon.
    mobike: bool


MODERN = SwanCapabilities(dns_style=DnsStyle.QUOTED, mobike=True)
LEGACY = SwanCapabilities(dns_style=DnsStyle.SPLIT, mobike=False)

# Evaluated top to bottom, the first matching row wins.
CAPABILITY_TABLE: tuple[tuple[SpecifierSet, SwanCapabilities], ...] = (
    (SpecifierSet("==4.*"), MODERN),
    *(
        (SpecifierSet(f"=={v}"), MODERN)
        for v in ("3.23", "3.25", "3.26", "3.27", "3.29", "3.31", "3.32")
    ),
    *((SpecifierSet(f"=={v}"), LEGACY) for v in ("3.19", "3.20", "3.21", "3.22")),
)


def parse_swan_version(text: str) -> str | None:
    """Get the version number from the output of 'ipsec --version'."""
    if "Libreswan" not in text:
        return None
    match = VERSION_OUTPUT_RE.search(text)
    if not match:
        return None
    return match.group(1)


def lookup_capabilities(version: str) -> SwanCapabilities | None:
    """Return the capabilities of a version, or None if it isn't supported."""
    try:
        parsed = Version(version)
    except InvalidVersion:
        return None
    for specifier, capabilities in CAPABILITY_TABLE:
        if parsed in specifier:
            return capabilities
    return None


def get_capabilities(version: str) -> SwanCapabilities:
    """Return the capabilities of a supported version."""
    capabilities = lookup_capabilities(version)
    if capabilities is None:
        msg = (
            f"Libreswan version '{version}' is not supported.\n"
            "       This script requires one of these versions:\n"
            "       3.19-3.23, 3.25-3.27, 3.29, 3.31-3.32 or 4.x\n"
            "       To update Libreswan, run the 'vpnupgrade' command."
        )
        raise PreconditionError(msg)
    return capabilities
