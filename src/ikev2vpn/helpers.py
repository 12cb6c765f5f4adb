"""Miscellaneous functions used throughout the package."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from typing import TYPE_CHECKING

import typer

from ikev2vpn import config
from ikev2vpn.exceptions import CommandError

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger("ikev2vpn")


def run_cmd(
    cmd: list[str],
    *,
    stdin: str | None = None,
    check: bool = True,
    capture: bool = True,
    error: str | None = None,
    secret: bool = False,
) -> subprocess.CompletedProcess[str]:
    """Run an external command and return the finished process.

    A failing command raises a CommandError with either the supplied error
    message or a generic one naming the tool. When ``secret`` is set only the
    program name is logged, the arguments may contain a password.
    """
    logger.debug("Running %s", cmd[0] if secret else cmd)
    try:
        proc = subprocess.run(  # noqa: S603
            cmd,
            input=stdin,
            stdout=subprocess.PIPE if capture else None,
            stderr=subprocess.PIPE if capture else None,
            text=True,
            check=check,
        )
    except FileNotFoundError as err:
        msg = error or f"'{cmd[0]}' not found."
        raise CommandError(msg) from err
    except subprocess.CalledProcessError as err:
        logger.debug(err.stderr)
        msg = error or f"'{cmd[0]}' failed."
        raise CommandError(msg) from err
    logger.debug(proc.stdout)
    return proc


def command_exists(name: str) -> bool:
    """Check if a program can be found in the PATH."""
    return shutil.which(name) is not None


def read_text(path: pathlib.Path) -> str:
    """Return the content of a file, or an empty string if it can't be read."""
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""


def file_contains(path: pathlib.Path, text: str) -> bool:
    """Check if a file contains a piece of text."""
    return text in read_text(path)


def check_ip(value: str) -> bool:
    """Check if a value is a dotted quad IPv4 address."""
    return bool(config.IP_RE.fullmatch(value.replace("\n", "")))


def check_dns_name(value: str) -> bool:
    """Check if a value is a fully qualified domain name."""
    return bool(config.FQDN_RE.fullmatch(value.replace("\n", "")))


def check_client_name(value: str) -> bool:
    """Check if a value is usable as a client name.

    One word of at most 64 letters, digits, '-' or '_', not starting with '-'.
    """
    return bool(config.CLIENT_NAME_RE.fullmatch(value))


def ask_yes_no(question: str, *, default: bool = False) -> bool:
    """Ask a yes/no question on the terminal, an empty answer is the default."""
    return typer.confirm(question, default=default)


def secure_file(path: pathlib.Path, owner: tuple[int, int] | None = None) -> None:
    """Restrict a file to its owner and hand it over to the given uid/gid."""
    if owner is not None:
        os.chown(path, *owner)
    path.chmod(0o600)


def write_private_file(
    path: pathlib.Path,
    content: str,
    owner: tuple[int, int] | None = None,
) -> None:
    """Write a file which is only readable by its owner from the moment it exists."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    secure_file(path, owner)
