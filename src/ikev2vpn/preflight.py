"""Check the system before anything is changed.

All checks only read from the system. The first failing check raises a
PreconditionError, nothing is set up until every check passed.
"""

from __future__ import annotations

import grp
import logging
import os
import pathlib
import platform
import pwd
import re

from ikev2vpn import config, helpers
from ikev2vpn.exceptions import CommandError, PreconditionError
from ikev2vpn.models import libreswan
from ikev2vpn.models.context import Environment, ExportTarget, OsInfo
from ikev2vpn.models.enums import OsType

logger = logging.getLogger("ikev2vpn")

UNSUPPORTED_OS_MSG = (
    "This script only supports Ubuntu, Debian, CentOS/RHEL 7/8 and Amazon Linux 2."
)
NO_BASE_INSTALL_MSG = (
    "Your must first set up the IPsec VPN server before setting up IKEv2.\n"
    "       See: https://github.com/hwdsl2/setup-ipsec-vpn"
)


def check_run_as_root(command: str = "ikev2setup") -> None:
    """Verify the program runs with root privileges."""
    if os.geteuid() != 0:
        msg = f"Script must be run as root. Try 'sudo {command}'"
        raise PreconditionError(msg)


def get_os_arch() -> str:
    """Return the machine architecture, e.g. 'x86_64' or 'aarch64'."""
    return re.sub(r"[^A-Za-z0-9_-]", "", platform.machine())


def _os_release_id() -> str:
    """Return the distribution id reported by lsb_release or os-release."""
    try:
        os_type = helpers.run_cmd(["lsb_release", "-si"]).stdout.strip()
    except CommandError:
        os_type = ""
    if os_type:
        return os_type.lower()
    for line in helpers.read_text(config.OS_RELEASE_PATH).splitlines():
        key, _, value = line.partition("=")
        if key.strip() == "ID":
            return value.strip().strip("\"'").lower()
    return ""


def get_debian_version() -> str:
    """Return the major debian version, e.g. '10' or 'bustersid'."""
    debian_version = helpers.read_text(config.DEBIAN_VERSION_PATH).strip()
    major = debian_version.split(".", 1)[0]
    return re.sub(r"[^A-Za-z0-9]", "", major)


def detect_os(*, debian_only: bool = False) -> OsInfo:
    """Identify the operating system from the release files."""
    os_arch = get_os_arch()

    if not debian_only:
        redhat_release = helpers.read_text(config.REDHAT_RELEASE_PATH)
        for version in ("7", "8"):
            if f"release {version}" in redhat_release:
                os_type = OsType.RHEL if "Red Hat" in redhat_release else OsType.CENTOS
                return OsInfo(os_type=os_type, os_ver=version, os_arch=os_arch)

        if "Amazon Linux release 2" in helpers.read_text(config.SYSTEM_RELEASE_PATH):
            return OsInfo(os_type=OsType.AMAZON, os_ver="2", os_arch=os_arch)

    os_id = _os_release_id()
    try:
        os_type = OsType(os_id)
    except ValueError:
        os_type = None
    if os_type is None or not os_type.is_debian_family:
        raise PreconditionError(UNSUPPORTED_OS_MSG)

    return OsInfo(os_type=os_type, os_ver=get_debian_version(), os_arch=os_arch)


def get_swan_version_output() -> str:
    """Return the output of 'ipsec --version', or an empty string."""
    try:
        return helpers.run_cmd([str(config.IPSEC_BIN), "--version"]).stdout
    except CommandError:
        return ""


def check_swan_install() -> str:
    """Verify the IPsec VPN server is set up and return the Libreswan version."""
    version = libreswan.parse_swan_version(get_swan_version_output())
    base_installed = helpers.file_contains(
        config.SYSCTL_CONF_PATH,
        config.BASE_INSTALL_MARKER,
    ) or helpers.file_contains(config.CONTAINER_RUN_SCRIPT, config.CONTAINER_MARKER)
    if (
        not base_installed
        or version is None
        or not config.CHAP_SECRETS_PATH.is_file()
        or not config.IPSEC_PASSWD_PATH.is_file()
    ):
        raise PreconditionError(NO_BASE_INSTALL_MSG)

    return version


def check_utils_exist() -> None:
    """Verify the NSS tools are installed."""
    for util in ("certutil", "pk12util"):
        if not helpers.command_exists(util):
            msg = f"'{util}' not found. Abort."
            raise PreconditionError(msg)


def check_container() -> bool:
    """Return whether the program runs inside the VPN docker image."""
    return helpers.file_contains(config.CONTAINER_RUN_SCRIPT, config.CONTAINER_MARKER)


def get_export_target(*, in_container: bool) -> ExportTarget:
    """Select the directory client configuration files are written to.

    Inside the container the files stay with the IPsec configuration. When run
    through sudo the files go to the home directory of the invoking user and
    are handed over to that user.
    """
    if in_container:
        return ExportTarget(directory=config.IPSEC_D_DIR)

    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        try:
            group = grp.getgrnam(sudo_user)
            user = pwd.getpwnam(sudo_user)
        except KeyError:
            logger.debug("No user or group found for SUDO_USER '%s'.", sudo_user)
        else:
            home_dir = pathlib.Path(user.pw_dir)
            if home_dir.is_dir() and home_dir != pathlib.Path("/"):
                return ExportTarget(
                    directory=home_dir,
                    owner=(user.pw_uid, group.gr_gid),
                )

    return ExportTarget(directory=pathlib.Path.home())


def check_environment() -> Environment:
    """Run every check needed before IKEv2 can be set up."""
    check_run_as_root()
    os_info = detect_os()
    logger.info(
        "Detected %s %s on %s.",
        os_info.os_type.value,
        os_info.os_ver,
        os_info.os_arch,
    )
    swan_ver = check_swan_install()
    capabilities = libreswan.get_capabilities(swan_ver)
    logger.info("Detected Libreswan %s.", swan_ver)
    check_utils_exist()
    in_container = check_container()

    return Environment(
        os=os_info,
        swan_ver=swan_ver,
        capabilities=capabilities,
        in_container=in_container,
        export=get_export_target(in_container=in_container),
    )
