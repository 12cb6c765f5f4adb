"""Build and install Libreswan from source.

The checks run first and only read from the system. The build replaces the
installed Libreswan, a failing step leaves the system as it was at that point.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
from typing import TYPE_CHECKING

from ikev2vpn import config, helpers, preflight
from ikev2vpn.exceptions import CommandError, PreconditionError
from ikev2vpn.models import libreswan
from ikev2vpn.services import network, packages

from . import patches

if TYPE_CHECKING:
    import pathlib

    from ikev2vpn.models.context import OsInfo

logger = logging.getLogger("ikev2vpn")

BUILD_PACKAGES = [
    "libnss3-dev",
    "libnspr4-dev",
    "pkg-config",
    "libpam0g-dev",
    "libcap-ng-dev",
    "libcap-ng-utils",
    "libselinux1-dev",
    "libcurl4-nss-dev",
    "libnss3-tools",
    "libevent-dev",
    "flex",
    "bison",
    "gcc",
    "make",
    "wget",
    "sed",
]
UNSUPPORTED_DEBIAN_VERSIONS = ("8", "jessiesid")


def detect_os() -> OsInfo:
    """Identify the operating system, only the debian family is supported."""
    try:
        os_info = preflight.detect_os(debian_only=True)
    except PreconditionError as err:
        msg = (
            "This script only supports Ubuntu and Debian.\n"
            "For CentOS/RHEL, use https://git.io/vpnupgrade-centos"
        )
        raise PreconditionError(msg) from err
    if os_info.os_ver in UNSUPPORTED_DEBIAN_VERSIONS:
        msg = "Debian 8 or Ubuntu < 16.04 is not supported."
        raise PreconditionError(msg)
    return os_info


def check_openvz() -> None:
    """Verify this isn't an OpenVZ container."""
    if config.OPENVZ_PATH.exists():
        msg = "OpenVZ VPS is not supported."
        raise PreconditionError(msg)


def check_target_version(swan_ver: str) -> None:
    """Verify the target version is one this pipeline can build."""
    if swan_ver not in config.SWAN_UPGRADE_VERSIONS:
        msg = (
            f"Libreswan version '{swan_ver}' is not supported.\n"
            "  This script can install one of the following versions:\n"
            "  3.26-3.27, 3.29, 3.31-3.32 or 4.1"
        )
        raise PreconditionError(msg)


def get_installed_version() -> str:
    """Return the installed Libreswan version."""
    version = libreswan.parse_swan_version(preflight.get_swan_version_output())
    if version is None:
        msg = (
            "This script requires Libreswan already installed.\n"
            "  See: https://github.com/hwdsl2/setup-ipsec-vpn"
        )
        raise PreconditionError(msg)
    return version


def check_upgrade_update(os_info: OsInfo, swan_ver_old: str, swan_ver: str) -> str | None:
    """Return a Libreswan version newer than the target, if there is one."""
    url = config.SWAN_UPGRADE_CHECK_URL.format(
        os_type=os_info.os_type.value,
        os_ver=os_info.os_ver,
    )
    params = {"arch": os_info.os_arch, "ver1": swan_ver_old, "ver2": swan_ver}
    return network.check_swan_update(url, params, swan_ver)


def install_build_packages() -> None:
    """Install the packages needed to compile Libreswan."""
    logger.info("Installing packages required for compilation.")
    packages.apt_update()
    packages.apt_install(BUILD_PACKAGES)


def fetch_source(swan_ver: str) -> pathlib.Path:
    """Download and unpack the Libreswan source, return the source tree."""
    config.SRC_DIR.mkdir(parents=True, exist_ok=True)
    archive = config.SRC_DIR.joinpath(f"libreswan-{swan_ver}.tar.gz")
    network.download([x.format(version=swan_ver) for x in config.SWAN_URLS], archive)

    src_dir = config.SRC_DIR.joinpath(f"libreswan-{swan_ver}")
    shutil.rmtree(src_dir, ignore_errors=True)
    logger.info("Unpacking %s.", archive)
    try:
        with tarfile.open(archive, "r:gz") as tar:
            # The data filter is missing on older 3.10/3.11 releases.
            if hasattr(tarfile, "data_filter"):
                tar.extractall(config.SRC_DIR, filter="data")
            else:
                tar.extractall(config.SRC_DIR)  # noqa: S202
    except (tarfile.TarError, OSError) as err:
        msg = f"Could not unpack {archive.name}."
        raise CommandError(msg) from err
    finally:
        archive.unlink(missing_ok=True)

    if not src_dir.is_dir():
        msg = f"Could not find {src_dir} after unpacking."
        raise CommandError(msg)
    return src_dir


def uses_systemd(src_dir: pathlib.Path) -> bool:
    """Check if the init system is systemd, using the Libreswan detection script."""
    detect_script = src_dir.joinpath("packaging", "utils", "lswan_detect.sh")
    proc = helpers.run_cmd([str(detect_script), "init"], check=False)
    return proc.stdout.strip() == "systemd"


def compile_and_install(src_dir: pathlib.Path) -> None:
    """Compile and install the base Libreswan programs."""
    jobs = (os.cpu_count() or 1) + 1
    logger.info("Compiling Libreswan with %s jobs.", jobs)
    helpers.run_cmd(
        ["make", "-C", str(src_dir), f"-j{jobs}", "-s", "base"],
        capture=False,
        error="Could not compile Libreswan.",
    )
    helpers.run_cmd(
        ["make", "-C", str(src_dir), "-s", "install-base"],
        capture=False,
        error="Could not install Libreswan.",
    )


def verify_install(swan_ver: str) -> None:
    """Verify the installed Libreswan reports the target version."""
    if swan_ver not in preflight.get_swan_version_output():
        msg = f"Libreswan {swan_ver} failed to build."
        raise CommandError(msg)


def build_libreswan(swan_ver: str) -> None:
    """Build and install a Libreswan version from source."""
    install_build_packages()
    src_dir = fetch_source(swan_ver)
    try:
        patches.apply_source_patches(swan_ver, src_dir)
        patches.write_makefile_inc_local(swan_ver, src_dir)
        if uses_systemd(src_dir):
            packages.apt_install(["libsystemd-dev"])
        compile_and_install(src_dir)
    finally:
        shutil.rmtree(src_dir, ignore_errors=True)
    verify_install(swan_ver)
