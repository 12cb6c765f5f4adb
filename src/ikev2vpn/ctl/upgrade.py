#!/usr/bin/env python3
"""Upgrade Libreswan on Ubuntu and Debian by building it from source."""

from __future__ import annotations

import logging

import typer
from rich.markup import escape
from typing_extensions import Annotated

from ikev2vpn import config, preflight
from ikev2vpn.exceptions import SetupAborted, VpnError
from ikev2vpn.services import libreswan
from ikev2vpn.upgrade import ipsecconf, pipeline

from . import prompts
from .prompts import console, err_console

logger = logging.getLogger("ikev2vpn")

app = typer.Typer(
    help="Build and install Libreswan from source on Ubuntu and Debian.",
    add_completion=False,
)

DNS_WARNING = """IMPORTANT: Users upgrading to Libreswan 3.23 or newer must edit /etc/ipsec.conf
    and replace all occurrences of these two lines:
      modecfgdns1=DNS_SERVER_1
      modecfgdns2=DNS_SERVER_2

    with a single line like this:
      modecfgdns="DNS_SERVER_1 DNS_SERVER_2"

    Then run "sudo service ipsec restart".
"""


def select_update(swan_ver_latest: str | None) -> None:
    """Mention a version newer than the one about to be installed."""
    if swan_ver_latest is None:
        return
    console.print(f"Note: A newer version of Libreswan ({swan_ver_latest}) is available.")
    console.print("To update to the new version, exit the script and upgrade ikev2vpn.\n")
    prompts.confirm_or_abort("Do you want to continue anyway?")


def select_reinstall(swan_ver_old: str, swan_ver: str) -> None:
    """Ask before installing the version that is already installed."""
    if swan_ver_old != swan_ver:
        return
    console.print(f"You already have Libreswan version {swan_ver} installed! ")
    console.print("If you continue, the same version will be re-installed.\n")
    prompts.confirm_or_abort("Do you want to continue anyway?")


def confirm_upgrade(swan_ver_old: str, swan_ver: str) -> None:
    """Show what is going to happen and ask for confirmation."""
    console.clear()
    console.print(
        "Welcome! This script will build and install Libreswan on your server.\n"
        "Additional packages required for compilation will also be installed.\n\n"
        "It is intended for upgrading servers to a newer Libreswan version.\n",
    )
    console.print(f"Current version:    Libreswan {swan_ver_old}")
    console.print(f"Version to install: Libreswan {swan_ver}\n")
    console.print(
        "NOTE: This script will make the following changes to your VPN configuration:\n"
        "    - Fix obsolete ipsec.conf and/or ikev2.conf options\n"
        "    - Optimize VPN ciphers\n\n"
        "    Your other VPN config files will not be modified.\n",
    )
    if swan_ver != config.SWAN_VER:
        console.print(
            "WARNING: Older versions of Libreswan could contain known security"
            " vulnerabilities.\n"
            "    See https://libreswan.org/security/ for more information.\n"
            "    Are you sure you want to install an older version?\n",
        )
    prompts.confirm_or_abort("Do you want to continue?")
    console.print("Please be patient. Setup is continuing...\n")


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def main(
    swan_ver: Annotated[
        str,
        typer.Option("--swan-ver", metavar="VERSION", help="Libreswan version to install."),
    ] = config.SWAN_VER,
) -> None:
    """
    Build and install Libreswan, then update the IPsec configuration.
    """
    try:
        os_info = pipeline.detect_os()
        pipeline.check_openvz()
        preflight.check_run_as_root("vpnupgrade")
        pipeline.check_target_version(swan_ver)
        swan_ver_old = pipeline.get_installed_version()

        select_update(pipeline.check_upgrade_update(os_info, swan_ver_old, swan_ver))
        select_reinstall(swan_ver_old, swan_ver)
        confirm_upgrade(swan_ver_old, swan_ver)

        pipeline.build_libreswan(swan_ver)
        dns_state = ipsecconf.update_ipsec_conf(swan_ver)
        ipsecconf.update_ikev2_conf()
        libreswan.restart_ipsec()
    except SetupAborted as err:
        console.print(escape(err.message))
        raise typer.Exit(1) from err
    except VpnError as err:
        logger.debug("Stopped: %s", err.message)
        err_console.print(f"Error: {escape(err.message)}")
        raise typer.Exit(1) from err
    except (EOFError, KeyboardInterrupt, typer.Abort) as err:
        console.print(f"\n{SetupAborted().message}")
        raise typer.Exit(1) from err

    rule = "=" * 48
    console.print(f"\n\n{rule}\n")
    console.print(f"Libreswan {swan_ver} has been successfully installed!\n")
    console.print(f"{rule}\n")
    if dns_state == ipsecconf.DnsState.MULTIPLE:
        console.print(escape(DNS_WARNING))


if __name__ == "__main__":
    app()
