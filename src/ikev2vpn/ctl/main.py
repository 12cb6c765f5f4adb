#!/usr/bin/env python3
"""Set up IKEv2 on an IPsec VPN server and manage its clients."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

import typer
from rich.markup import escape
from typing_extensions import Annotated

from ikev2vpn import config, core, helpers, preflight
from ikev2vpn.exceptions import PreconditionError, SetupAborted, VpnError
from ikev2vpn.models.context import SetupOptions
from ikev2vpn.models.defaults import load_defaults
from ikev2vpn.models.enums import MenuOption
from ikev2vpn.services import libreswan, network, nss

from . import prompts
from .prompts import console, err_console

if TYPE_CHECKING:
    from ikev2vpn.models.context import Environment
    from ikev2vpn.models.defaults import SetupDefaults

logger = logging.getLogger("ikev2vpn")

app = typer.Typer(
    help="Set up IKEv2 on an IPsec VPN server and manage IKEv2 VPN clients.",
    add_completion=False,
)


def check_arguments(
    ctx: typer.Context,
    db: nss.CertificateDatabase,
    *,
    auto: bool,
    addclient: str | None,
    exportclient: str | None,
    listclients: bool,
    removeikev2: bool,
) -> None:
    """Validate the command line before anything is changed."""
    configured = libreswan.is_configured()
    if auto and configured and not removeikev2:
        err_console.print(
            "Warning: Ignoring parameter '--auto', which is valid for initial"
            " IKEv2 setup only.\n",
        )

    if sum([addclient is not None, exportclient is not None, listclients]) > 1:
        ctx.fail(
            "Invalid parameters. Specify only one of '--addclient',"
            " '--exportclient' or '--listclients'.",
        )
    if removeikev2 and (
        auto or addclient is not None or exportclient is not None or listclients
    ):
        ctx.fail("Parameter '--removeikev2' cannot be used with other parameters.")

    if not configured:
        msg = None
        if addclient is not None:
            msg = "You must first set up IKEv2 before adding a new client."
        elif exportclient is not None:
            msg = "You must first set up IKEv2 before exporting a client configuration."
        elif listclients:
            msg = "You must first set up IKEv2 before listing clients."
        elif removeikev2:
            msg = "Cannot remove IKEv2 because it has not been set up on this server."
        if msg:
            raise PreconditionError(msg)

    if addclient is not None:
        if not helpers.check_client_name(addclient):
            raise PreconditionError(prompts.INVALID_NAME_MSG)
        if db.exists(addclient):
            msg = f"Invalid client name. Client '{addclient}' already exists."
            raise PreconditionError(msg)

    if exportclient is not None:
        if not helpers.check_client_name(exportclient):
            raise PreconditionError(prompts.INVALID_NAME_MSG)
        if exportclient in (config.CA_NAME, libreswan.get_server_address()) or not db.exists(
            exportclient,
        ):
            msg = "Invalid client name, or client does not exist."
            raise PreconditionError(msg)


def swan_update_params(env: Environment, *, auto: bool) -> tuple[str, dict[str, str]]:
    """Return the version check endpoint and its query parameters."""
    auto_str = "1" if auto else "0"
    if env.in_container:
        url = config.SWAN_CHECK_URL_CONTAINER.format(os_arch=env.os.os_arch)
        return url, {"ver": env.swan_ver, "auto": auto_str}
    url = config.SWAN_CHECK_URL.format(os_type=env.os.os_type.value, os_ver=env.os.os_ver)
    return url, {"arch": env.os.os_arch, "ver": env.swan_ver, "auto": auto_str}


def check_swan_update(env: Environment, *, auto: bool) -> str | None:
    """Return a newer Libreswan version, if there is one."""
    url, params = swan_update_params(env, auto=auto)
    return network.check_swan_update(url, params, env.swan_ver)


def add_client_flow(
    env: Environment,
    db: nss.CertificateDatabase,
    client_name: str,
    validity: int = config.CLIENT_VALIDITY_MAX,
    *,
    use_own_password: bool = False,
) -> None:
    """Add a client and print where its configuration went."""
    prompts.bigecho("Generating client certificate...")
    if use_own_password:
        prompts.show_own_password_notice()
    client_bundle = core.add_client(
        env,
        db,
        client_name,
        validity,
        use_own_password=use_own_password,
    )
    prompts.print_banner(
        "New IKEv2 VPN client added!",
        libreswan.get_server_address(),
        client_name,
    )
    prompts.print_client_info(client_bundle)


def export_client_flow(
    env: Environment,
    db: nss.CertificateDatabase,
    client_name: str,
    *,
    use_own_password: bool = False,
) -> None:
    """Export a client and print where its configuration went."""
    prompts.bigecho("Exporting client configuration...")
    if use_own_password:
        prompts.show_own_password_notice()
    client_bundle = core.export_client(
        env,
        db,
        client_name,
        use_own_password=use_own_password,
    )
    prompts.print_banner(
        "IKEv2 client configuration exported!",
        libreswan.get_server_address(),
        client_name,
    )
    prompts.print_client_info(client_bundle)


def list_clients_flow(db: nss.CertificateDatabase) -> None:
    """Print the existing clients."""
    prompts.print_client_list(core.list_clients(db))


def remove_flow(db: nss.CertificateDatabase) -> None:
    """Remove IKEv2 after the operator confirmed it."""
    libreswan.check_removable()
    prompts.confirm_remove_ikev2()
    prompts.bigecho("Removing IKEv2...")
    core.remove_ikev2(db)
    console.print(f"\n{prompts.RULE}\n")
    console.print("IKEv2 removed!\n")
    console.print(prompts.RULE + "\n")


def menu_flow(
    env: Environment,
    db: nss.CertificateDatabase,
    defaults: SetupDefaults,
) -> None:
    """Offer the menu used when IKEv2 is already set up."""
    option = prompts.select_menu_option()
    if option == MenuOption.ADD:
        client_name = prompts.enter_client_name(db)
        validity = prompts.enter_client_cert_validity(defaults.client_validity)
        use_own_password = prompts.select_p12_password()
        add_client_flow(env, db, client_name, validity, use_own_password=use_own_password)
    elif option == MenuOption.EXPORT:
        client_name = prompts.enter_client_name_for_export(
            db,
            libreswan.get_server_address(),
        )
        use_own_password = prompts.select_p12_password()
        export_client_flow(env, db, client_name, use_own_password=use_own_password)
    elif option == MenuOption.LIST:
        console.print()
        list_clients_flow(db)
    elif option == MenuOption.REMOVE:
        remove_flow(db)


def auto_setup_options(
    env: Environment,
    db: nss.CertificateDatabase,
    defaults: SetupDefaults,
) -> SetupOptions:
    """Select the setup options without asking the operator."""
    console.print("\nStarting IKEv2 setup in auto mode, using default options.")
    server_addr = network.get_public_ip()
    if not helpers.check_ip(server_addr):
        msg = "Could not detect this server's public IP."
        raise PreconditionError(msg)
    core.check_server_cert_absent(db, server_addr)
    core.check_client_cert_absent(db, defaults.client_name)
    mobike_support = libreswan.check_mobike_support(env)
    prompts.show_mobike_support(mobike_support)

    return SetupOptions(
        server_addr=server_addr,
        client_name=defaults.client_name,
        client_validity=defaults.client_validity,
        dns_servers=defaults.dns_servers,
        mobike_support=mobike_support,
        mobike_enable=mobike_support,
    )


def interactive_setup_options(
    env: Environment,
    db: nss.CertificateDatabase,
    defaults: SetupDefaults,
) -> SetupOptions:
    """Ask the operator for the setup options."""
    prompts.show_welcome_message()
    server_addr, use_dns_name = prompts.enter_server_address()
    core.check_server_cert_absent(db, server_addr)
    client_name = prompts.enter_client_name(db, defaults.client_name)
    client_validity = prompts.enter_client_cert_validity(defaults.client_validity)
    dns_servers = prompts.enter_custom_dns(defaults.dns_servers)
    mobike_support = libreswan.check_mobike_support(env)
    prompts.show_mobike_support(mobike_support)
    mobike_enable = prompts.select_mobike(mobike_support)
    use_own_password = prompts.select_p12_password()

    options = SetupOptions(
        server_addr=server_addr,
        use_dns_name=use_dns_name,
        client_name=client_name,
        client_validity=client_validity,
        dns_servers=dns_servers,
        mobike_support=mobike_support,
        mobike_enable=mobike_enable,
        use_own_password=use_own_password,
    )
    prompts.confirm_setup_options(options)
    return options


def setup_flow(
    env: Environment,
    db: nss.CertificateDatabase,
    defaults: SetupDefaults,
    *,
    auto: bool,
) -> None:
    """Set up IKEv2 from scratch."""
    core.check_ca_cert_absent(db)
    swan_ver_latest = check_swan_update(env, auto=auto)
    if auto:
        options = auto_setup_options(env, db, defaults)
    else:
        prompts.select_swan_update(env, swan_ver_latest)
        options = interactive_setup_options(env, db, defaults)

    prompts.bigecho("Generating CA and certificates, adding the IKEv2 connection...")
    if options.use_own_password:
        prompts.show_own_password_notice()
    client_bundle = core.setup_ikev2(env, db, options, defaults)

    prompts.print_banner(
        "IKEv2 setup successful. Details for IKEv2 mode:",
        options.server_addr,
        options.client_name,
    )
    prompts.print_client_info(client_bundle)
    if auto:
        prompts.show_swan_update_info(env, swan_ver_latest)


@app.command(context_settings={"help_option_names": ["-h", "--help"]})
def main(
    ctx: typer.Context,
    auto: Annotated[
        bool,
        typer.Option("--auto", help="Run IKEv2 setup in auto mode using default options."),
    ] = False,
    addclient: Annotated[
        Optional[str],
        typer.Option(
            "--addclient",
            metavar="NAME",
            help="Add a new client using default options.",
        ),
    ] = None,
    exportclient: Annotated[
        Optional[str],
        typer.Option(
            "--exportclient",
            metavar="NAME",
            help="Export configuration for an existing client.",
        ),
    ] = None,
    listclients: Annotated[
        bool,
        typer.Option("--listclients", help="List the names of existing clients."),
    ] = False,
    removeikev2: Annotated[
        bool,
        typer.Option("--removeikev2", help="Remove IKEv2 and delete all certificates and keys."),
    ] = False,
) -> None:
    """
    Set up IKEv2 on this VPN server, or manage the clients of an existing setup.
    """
    try:
        env = preflight.check_environment()
        db = nss.CertificateDatabase()
        check_arguments(
            ctx,
            db,
            auto=auto,
            addclient=addclient,
            exportclient=exportclient,
            listclients=listclients,
            removeikev2=removeikev2,
        )

        defaults = load_defaults()
        if addclient is not None:
            add_client_flow(env, db, addclient, defaults.client_validity)
        elif exportclient is not None:
            export_client_flow(env, db, exportclient)
        elif listclients:
            list_clients_flow(db)
        elif removeikev2:
            remove_flow(db)
        elif libreswan.is_configured():
            menu_flow(env, db, defaults)
        else:
            setup_flow(env, db, defaults, auto=auto)
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


if __name__ == "__main__":
    app()
