"""Version specific changes to the Libreswan source tree before it is built.

The patch table is frozen, every entry is a plain line edit on a file relative
to the root of the unpacked source tree.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from ikev2vpn import config, helpers

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger("ikev2vpn")


class PatchAction(str, Enum):
    """Define the kinds of line edits."""

    # Replace the first match on every line, or only on `line` if given.
    SUBSTITUTE = "substitute"
    # Delete every line matching the pattern.
    DELETE = "delete"
    # Insert text before `line`.
    INSERT = "insert"


class SourcePatch(BaseModel):
    """A single line edit on a source file."""

    model_config = ConfigDict(frozen=True)

    path: str
    action: PatchAction
    pattern: str = ""
    text: str = ""
    # 1-based line number.
    line: int | None = None

    def apply_to_text(self, content: str) -> str:
        """Return the content with the edit applied."""
        lines = content.splitlines(keepends=True)
        regex = re.compile(self.pattern)

        if self.action == PatchAction.INSERT:
            index = min((self.line or 1) - 1, len(lines))
            lines.insert(index, f"{self.text}\n")
        elif self.action == PatchAction.DELETE:
            lines = [x for x in lines if not regex.search(x)]
        else:
            for i, line in enumerate(lines):
                if self.line is not None and i != self.line - 1:
                    continue
                lines[i] = regex.sub(lambda _: self.text, line, count=1)
        return "".join(lines)

    def apply(self, src_dir: pathlib.Path) -> None:
        """Apply the edit to the file in the source tree."""
        path = src_dir.joinpath(self.path)
        logger.info("Patching %s.", path)
        content = path.read_text(encoding="utf-8")
        path.write_text(self.apply_to_text(content), encoding="utf-8")


SOURCE_PATCHES: MappingProxyType[str, tuple[SourcePatch, ...]] = MappingProxyType(
    {
        "3.26": (
            SourcePatch(
                path="mk/config.mk",
                action=PatchAction.SUBSTITUTE,
                pattern=r"-lfreebl ",
                text="",
            ),
            SourcePatch(
                path="programs/pluto/keys.c",
                action=PatchAction.DELETE,
                pattern=r"blapi\.h",
            ),
        ),
        "3.31": (
            SourcePatch(
                path="programs/pluto/ikev2.c",
                action=PatchAction.INSERT,
                line=916,
                text="if (!st->st_seen_fragvid) { return FALSE; }",
            ),
            SourcePatch(
                path="programs/pluto/ikev2_message.c",
                action=PatchAction.SUBSTITUTE,
                line=1033,
                pattern=r"if \(",
                text=(
                    "if (LIN(POLICY_IKE_FRAG_ALLOW, sk->ike->sa.st_connection->policy)"
                    " && sk->ike->sa.st_seen_fragvid && "
                ),
            ),
        ),
        "4.1": (
            SourcePatch(
                path="programs/setup/setup.in",
                action=PatchAction.SUBSTITUTE,
                pattern=r" sysv \)",
                text=" sysvinit )",
            ),
        ),
    },
)


def apply_source_patches(swan_ver: str, src_dir: pathlib.Path) -> None:
    """Apply the patches registered for a Libreswan version."""
    for patch in SOURCE_PATCHES.get(swan_ver, ()):
        patch.apply(src_dir)


def makefile_flags(
    swan_ver: str,
    *,
    has_codename: bool,
    has_ifla_xfrm_link: bool,
) -> list[str]:
    """Return the build flags written to Makefile.inc.local.

    `has_codename` tells if /etc/os-release has a VERSION_CODENAME, and
    `has_ifla_xfrm_link` if the kernel headers define IFLA_XFRM_LINK.
    """
    flags = ["WERROR_CFLAGS=-w", "USE_DNSSEC=false"]
    if swan_ver != "4.1" or not has_codename:
        flags += [
            "USE_DH31=false",
            "USE_NSS_AVA_COPY=true",
            "USE_NSS_IPSEC_PROFILE=false",
            "USE_GLIBC_KERN_FLIP_HEADERS=true",
        ]
    if swan_ver in ("3.31", "3.32", "4.1"):
        flags.append("USE_DH2=true")
        if not has_ifla_xfrm_link:
            flags.append("USE_XFRM_INTERFACE_IFLA_HEADER=true")
    if swan_ver == "4.1":
        flags += ["USE_NSS_KDF=false", f"FINALNSSDIR={config.IPSEC_D_DIR}"]
    return flags


def write_makefile_inc_local(swan_ver: str, src_dir: pathlib.Path) -> None:
    """Write Makefile.inc.local for the host this runs on."""
    flags = makefile_flags(
        swan_ver,
        has_codename=helpers.file_contains(config.OS_RELEASE_PATH, "VERSION_CODENAME="),
        has_ifla_xfrm_link=helpers.file_contains(config.IF_LINK_HEADER, "IFLA_XFRM_LINK"),
    )
    logger.debug("Build flags: %s", flags)
    src_dir.joinpath("Makefile.inc.local").write_text(
        "".join(f"{x}\n" for x in flags),
        encoding="utf-8",
    )
