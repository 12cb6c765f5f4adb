"""Update ipsec.conf and ikev2.conf for a newer Libreswan version.

Rules only touch indented lines, i.e. parameters inside a conn section.
Rewritten lines are indented with two spaces.
"""

from __future__ import annotations

import datetime
import logging
import platform
import re
import shutil
from enum import IntEnum
from typing import TYPE_CHECKING

from ikev2vpn import config, helpers
from ikev2vpn.exceptions import CommandError, PreconditionError

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger("ikev2vpn")

IKE_NEW = (
    "  ike=aes256-sha2,aes128-sha2,aes256-sha1,aes128-sha1,"
    "aes256-sha2;modp1024,aes128-sha1;modp1024"
)
PHASE2_NEW = (
    "  phase2alg=aes_gcm-null,aes128-sha1,aes256-sha1,aes256-sha2_512,aes128-sha2,aes256-sha2"
)
PHASE2_NEW_NO_SHA512 = "  phase2alg=aes_gcm-null,aes128-sha1,aes256-sha1,aes128-sha2,aes256-sha2"

# Versions that need 'ikev2=never' in the 'conn shared' section.
IKEV2_NEVER_VERSIONS = ("3.29", "3.31", "3.32", "4.1")

# (pattern, replacement), applied in order to every line.
RENAME_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^\s+auth="), "  phase2="),
    (re.compile(r"^\s+forceencaps="), "  encapsulation="),
    (re.compile(r"^\s+ike-frag="), "  fragmentation="),
    (re.compile(r"^\s+sha2_truncbug="), "  sha2-truncbug="),
    (re.compile(r"^\s+sha2-truncbug=yes"), "  sha2-truncbug=no"),
)
IKE_RE = re.compile(r"^\s+ike=.+")
PHASE2ALG_RE = re.compile(r"^\s+phase2alg=.+")
MODECFGDNS1_RE = re.compile(r"^\s+modecfgdns1=.+")
IKE_FRAG_RE = re.compile(r"^\s+ike-frag=")


class DnsState(IntEnum):
    """Describe the modecfgdns1/modecfgdns2 lines found in ipsec.conf."""

    NONE = 0
    # One modecfgdns1 and one modecfgdns2, merged into a quoted modecfgdns.
    BOTH = 1
    # Only modecfgdns1, renamed to modecfgdns.
    SINGLE = 2
    # More than one modecfgdns1, left as is and reported to the operator.
    MULTIPLE = 3


def _first_value(lines: list[str], key: str) -> str:
    for line in lines:
        if key in line:
            return line.split("=")[1]
    return ""


def get_dns_state(content: str) -> tuple[DnsState, str, str]:
    """Return the DNS state and the first primary and secondary DNS server."""
    lines = content.splitlines()
    dns_srv1 = _first_value(lines, "modecfgdns1=")
    dns_srv2 = _first_value(lines, "modecfgdns2=")

    if sum("modecfgdns1=" in x for x in lines) > 1:
        return DnsState.MULTIPLE, dns_srv1, dns_srv2
    if dns_srv1 and dns_srv2:
        return DnsState.BOTH, dns_srv1, dns_srv2
    if dns_srv1:
        return DnsState.SINGLE, dns_srv1, dns_srv2
    return DnsState.NONE, dns_srv1, dns_srv2


def phase2_line(*, sha512: bool = True) -> str:
    """Return the new phase2alg line."""
    return PHASE2_NEW if sha512 else PHASE2_NEW_NO_SHA512


def transform_ipsec_conf(
    content: str,
    swan_ver: str,
    *,
    sha512: bool = True,
) -> tuple[str, DnsState]:
    """Return the updated ipsec.conf content and the DNS state found."""
    dns_state, dns_srv1, dns_srv2 = get_dns_state(content)
    phase2_new = phase2_line(sha512=sha512)

    lines: list[str] = []
    for line in content.splitlines():
        for pattern, replacement in RENAME_RULES:
            line = pattern.sub(replacement, line, count=1)  # noqa: PLW2901
        if IKE_RE.match(line):
            line = IKE_NEW  # noqa: PLW2901
        elif PHASE2ALG_RE.match(line):
            line = phase2_new  # noqa: PLW2901
        lines.append(line)

    if dns_state == DnsState.BOTH:
        lines = [
            f'  modecfgdns="{dns_srv1} {dns_srv2}"' if MODECFGDNS1_RE.match(x) else x
            for x in lines
            if "modecfgdns2=" not in x
        ]
    elif dns_state == DnsState.SINGLE:
        lines = [f"  modecfgdns={dns_srv1}" if MODECFGDNS1_RE.match(x) else x for x in lines]

    if swan_ver in IKEV2_NEVER_VERSIONS:
        patched: list[str] = []
        for line in lines:
            if "ikev2=never" in line:
                continue
            patched.append(line)
            if "conn shared" in line:
                patched.append("  ikev2=never")
        lines = patched

    trailing = "\n" if content.endswith("\n") else ""
    return "\n".join(lines) + trailing, dns_state


def transform_ikev2_conf(content: str) -> str:
    """Return the updated ikev2.conf content."""
    trailing = "\n" if content.endswith("\n") else ""
    lines = [IKE_FRAG_RE.sub("  fragmentation=", x, count=1) for x in content.splitlines()]
    return "\n".join(lines) + trailing


def has_sha512() -> bool:
    """Check if the kernel supports sha512, only ARM kernels may lack it."""
    if not platform.machine().lower().startswith("arm"):
        return True
    proc = helpers.run_cmd(["modprobe", "-q", "sha512"], check=False)
    return proc.returncode == 0


def backup_path(path: pathlib.Path) -> pathlib.Path:
    """Return the path the original file is kept at."""
    timestamp = datetime.datetime.now().strftime("%Y-%m-%d-%H:%M:%S")  # noqa: DTZ005
    return path.with_name(f"{path.name}.old-{timestamp}")


def update_ipsec_conf(swan_ver: str) -> DnsState:
    """Update ipsec.conf in place, keeping a backup of the original."""
    path = config.IPSEC_CONF_PATH
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as err:
        msg = f"Could not read {path}, IPsec configuration was not updated."
        raise PreconditionError(msg) from err
    backup = backup_path(path)
    logger.info("Updating %s, the original is kept at %s.", path, backup)

    new_content, dns_state = transform_ipsec_conf(content, swan_ver, sha512=has_sha512())
    try:
        shutil.copy2(path, backup)
        path.write_text(new_content, encoding="utf-8")
    except OSError as err:
        msg = f"Could not update {path}."
        raise CommandError(msg) from err
    return dns_state


def update_ikev2_conf() -> None:
    """Rename obsolete options in ikev2.conf, if it exists."""
    path = config.IKEV2_CONF_PATH
    if not helpers.file_contains(path, "ike-frag"):
        return
    logger.info("Updating %s.", path)
    try:
        path.write_text(transform_ikev2_conf(path.read_text(encoding="utf-8")), encoding="utf-8")
    except OSError as err:
        msg = f"Could not update {path}."
        raise CommandError(msg) from err
