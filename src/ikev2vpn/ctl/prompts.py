"""Interactive questions and messages of the ikev2setup CLI tool."""

from __future__ import annotations

from ipaddress import IPv4Address
from typing import TYPE_CHECKING

import tabulate
from rich.console import Console
from rich.markup import escape

from ikev2vpn import config, helpers
from ikev2vpn.exceptions import SetupAborted
from ikev2vpn.models.enums import MenuOption, OsType
from ikev2vpn.services import network

if TYPE_CHECKING:
    from ikev2vpn.models.context import ClientBundle, Environment, SetupOptions
    from ikev2vpn.services.nss import CertificateDatabase

console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)

INVALID_NAME_MSG = (
    "Invalid client name. Use one word only, no special characters except '-' and '_'."
)
RULE = "=" * 63


def bigecho(msg: str) -> None:
    """Print a progress headline."""
    console.print(f"\n## {escape(msg)}\n")


def confirm_or_abort(question: str) -> None:
    """Ask to continue, a negative answer aborts without changes."""
    if not helpers.ask_yes_no(question):
        raise SetupAborted
    console.print()


def update_instructions(env: Environment) -> list[str]:
    """Return how to update Libreswan on this system."""
    if env.in_container:
        return ["To update this Docker image, see: https://git.io/updatedockervpn"]
    if env.os.os_type.is_debian_family:
        return ["To update, exit this script and run:", "  sudo vpnupgrade"]
    update_url = "vpnupgrade-amzn" if env.os.os_type == OsType.AMAZON else "vpnupgrade-centos"
    return [
        "To update, exit this script and run:",
        f"  wget https://git.io/{update_url} -O vpnupgrade.sh",
        "  sudo sh vpnupgrade.sh",
    ]


def select_swan_update(env: Environment, swan_ver_latest: str | None) -> None:
    """Recommend updating Libreswan before IKEv2 is set up."""
    if swan_ver_latest is None:
        return
    console.print(f"Note: A newer version of Libreswan ({swan_ver_latest}) is available.")
    console.print("It is recommended to update Libreswan before setting up IKEv2.")
    for line in update_instructions(env):
        console.print(escape(line))
    console.print()
    confirm_or_abort("Do you want to continue anyway?")


def show_swan_update_info(env: Environment, swan_ver_latest: str | None) -> None:
    """Mention a newer Libreswan version after setup."""
    if swan_ver_latest is None:
        return
    console.print(f"\nNote: A newer version of Libreswan ({swan_ver_latest}) is available.")
    for line in update_instructions(env):
        console.print(escape(line))


def show_welcome_message() -> None:
    """Greet the operator before the setup questions."""
    console.clear()
    console.print(
        "Welcome! Use this script to set up IKEv2 after setting up your own IPsec VPN"
        " server.\nAlternatively, you may manually set up IKEv2."
        " See: https://git.io/ikev2\n\n"
        "I need to ask you a few questions before starting setup.\n"
        "You can use the default options and just press enter if you are OK with them.\n",
    )


def enter_server_address() -> tuple[str, bool]:
    """Ask for the address clients connect to.

    Returns the address and whether it is a DNS name.
    """
    console.print(
        "Do you want IKEv2 VPN clients to connect to this server using a DNS name,",
    )
    use_dns_name = helpers.ask_yes_no(
        "e.g. vpn.example.com, instead of its IP address?",
    )
    console.print()

    if use_dns_name:
        server_addr = input("Enter the DNS name of this VPN server: ").strip()
        while not helpers.check_dns_name(server_addr):
            console.print(
                "Invalid DNS name. You must enter a fully qualified domain name (FQDN).",
            )
            server_addr = input("Enter the DNS name of this VPN server: ").strip()
        return server_addr, True

    public_ip = network.get_public_ip()
    console.print()
    question = f"Enter the IPv4 address of this VPN server: [{public_ip}] "
    server_addr = input(question).strip() or public_ip
    while not helpers.check_ip(server_addr):
        console.print("Invalid IP address.")
        server_addr = input(question).strip() or public_ip
    return server_addr, False


def _client_name_intro() -> None:
    console.print("\nProvide a name for the IKEv2 VPN client.")
    console.print("Use one word only, no special characters except '-' and '_'.")


def enter_client_name(db: CertificateDatabase, default: str | None = None) -> str:
    """Ask for the name of a new client."""
    _client_name_intro()
    question = f"Client name: [{default}] " if default else "Client name: "
    while True:
        client_name = input(question).strip() or (default or "")
        if not helpers.check_client_name(client_name):
            console.print("Invalid client name.")
        elif db.exists(client_name):
            console.print(f"Invalid client name. Client '{escape(client_name)}' already exists.")
        else:
            return client_name


def print_client_list(clients: list[str]) -> None:
    """Print the names of the existing clients."""
    console.print("Checking for existing IKEv2 client(s)...")
    for client in clients:
        console.print(escape(client))


def enter_client_name_for_export(
    db: CertificateDatabase,
    server_addr: str,
) -> str:
    """Ask for the name of an existing client."""
    console.print()
    print_client_list(db.list_clients())
    console.print()
    question = "Enter the name of the IKEv2 client to export: "
    client_name = input(question).strip()
    while (
        not helpers.check_client_name(client_name)
        or client_name in (config.CA_NAME, server_addr)
        or not db.exists(client_name)
    ):
        console.print("Invalid client name, or client does not exist.")
        client_name = input(question).strip()
    return client_name


def enter_client_cert_validity(default: int = config.CLIENT_VALIDITY_MAX) -> int:
    """Ask for the validity of the client certificate in months."""
    console.print("\nSpecify the validity period (in months) for this VPN client certificate.")
    question = (
        f"Enter a number between {config.CLIENT_VALIDITY_MIN} and "
        f"{config.CLIENT_VALIDITY_MAX}: [{default}] "
    )
    while True:
        response = input(question).strip() or str(default)
        # No signs or leading zeros.
        if response.isdigit() and not response.startswith("0"):
            validity = int(response)
            if config.CLIENT_VALIDITY_MIN <= validity <= config.CLIENT_VALIDITY_MAX:
                return validity
        console.print("Invalid validity period.")


def enter_custom_dns(defaults: list[IPv4Address]) -> list[IPv4Address]:
    """Ask for the DNS servers pushed to the clients."""
    default_str = ", ".join(str(x) for x in defaults)
    console.print(
        f"\nBy default, clients are set to use DNS servers {default_str} when the VPN"
        " is active.",
    )
    if not helpers.ask_yes_no("Do you want to specify custom DNS servers for IKEv2?"):
        console.print(f"Using DNS servers {default_str}.")
        return list(defaults)

    dns_server_1 = input("Enter primary DNS server: ").strip()
    while not helpers.check_ip(dns_server_1):
        console.print("Invalid DNS server.")
        dns_server_1 = input("Enter primary DNS server: ").strip()

    dns_server_2 = input("Enter secondary DNS server (Enter to skip): ").strip()
    while dns_server_2 and not helpers.check_ip(dns_server_2):
        console.print("Invalid DNS server.")
        dns_server_2 = input("Enter secondary DNS server (Enter to skip): ").strip()

    if dns_server_2:
        return [IPv4Address(dns_server_1), IPv4Address(dns_server_2)]
    return [IPv4Address(dns_server_1)]


def show_mobike_support(mobike_support: bool) -> None:  # noqa: FBT001
    """Print the result of the MOBIKE check."""
    status = "available" if mobike_support else "not available"
    console.print(f"\nChecking for MOBIKE support... {status}")


def select_mobike(mobike_support: bool) -> bool:  # noqa: FBT001
    """Ask to enable MOBIKE, if the system supports it."""
    if not mobike_support:
        return False
    console.print(
        "\nThe MOBIKE IKEv2 extension allows VPN clients to change network attachment"
        " points,\ne.g. switch between mobile data and Wi-Fi and keep the IPsec tunnel"
        " up on the new IP.\n",
    )
    return helpers.ask_yes_no("Do you want to enable MOBIKE support?", default=True)


def select_p12_password() -> bool:
    """Ask whether the operator enters their own password."""
    console.print(
        "\nClient configuration will be exported as .p12, .sswan and .mobileconfig files,\n"
        "which contain the client certificate, private key and CA certificate.\n"
        "To protect these files, this script can generate a random password for you,\n"
        "which will be displayed when finished.\n",
    )
    return helpers.ask_yes_no("Do you want to specify your own password instead?")


def show_own_password_notice() -> None:
    """Explain the password pk12util is about to ask for."""
    console.print(
        "Enter a *secure* password to protect the client configuration files.\n"
        "When importing into an iOS or macOS device, this password cannot be empty.\n",
    )


def select_menu_option() -> MenuOption:
    """Show the menu used when IKEv2 is already set up."""
    console.print("It looks like IKEv2 has already been set up on this server.\n")
    console.print("Select an option:")
    console.print("  1) Add a new client")
    console.print("  2) Export configuration for an existing client")
    console.print("  3) List existing clients")
    console.print("  4) Remove IKEv2")
    console.print("  5) Exit")
    selected = input("Option: ").strip()
    while selected not in {x.value for x in MenuOption}:
        console.print(f"{escape(selected)}: invalid selection.")
        selected = input("Option: ").strip()
    return MenuOption(selected)


def confirm_setup_options(options: SetupOptions) -> None:
    """Show the selected options and ask for a final confirmation."""
    if options.client_validity == 1:
        validity = "1 month"
    else:
        validity = f"{options.client_validity} months"
    if not options.mobike_support:
        mobike = "Not available"
    elif options.mobike_enable:
        mobike = "Enable"
    else:
        mobike = "Disable"

    rows = [
        ("VPN server address:", options.server_addr),
        ("VPN client name:", options.client_name),
        ("Client cert valid for:", validity),
        ("MOBIKE support:", mobike),
        ("DNS server(s):", " ".join(str(x) for x in options.dns_servers)),
    ]
    console.print("\nBelow are the IKEv2 setup options you selected.")
    console.print("Please double check before continuing!\n")
    console.print(RULE + "\n")
    console.print(escape(tabulate.tabulate(rows, tablefmt="plain")))
    console.print("\n" + RULE + "\n")
    confirm_or_abort("We are ready to set up IKEv2 now. Do you want to continue?")


def confirm_remove_ikev2() -> None:
    """Warn about removing IKEv2 and ask for confirmation."""
    console.print(
        "\nWARNING: This option will remove IKEv2 from this VPN server, but keep the"
        " IPsec/L2TP\n         and IPsec/XAuth (\"Cisco IPsec\") modes. All IKEv2"
        " configuration including\n         certificates and keys will be permanently"
        " deleted.\n         This *cannot be undone*! \n",
    )
    confirm_or_abort("Are you sure you want to remove IKEv2?")


def print_banner(title: str, server_addr: str, client_name: str) -> None:
    """Print the result of a setup, add or export."""
    console.print(f"\n{RULE}\n")
    console.print(escape(title) + "\n")
    console.print(f"VPN server address: {escape(server_addr)}")
    console.print(f"VPN client name: {escape(client_name)}\n")


def print_client_info(client_bundle: ClientBundle) -> None:
    """Print where the client configuration is and the password protecting it."""
    console.print("Client configuration is available at:\n")
    console.print(f"{escape(str(client_bundle.p12))} (for Windows)")
    console.print(f"{escape(str(client_bundle.sswan))} (for Android)")
    console.print(f"{escape(str(client_bundle.mobileconfig))} (for iOS & macOS)")
    if client_bundle.password is not None:
        console.print("\n*IMPORTANT* Password for client config files:")
        console.print(client_bundle.password)
        console.print("Write this down, you'll need it to import to your device!")
    console.print(
        "\nNext steps: Configure IKEv2 VPN clients. See:\nhttps://git.io/ikev2clients\n\n"
        "To add more IKEv2 VPN clients, run this script again.\n",
    )
    console.print(RULE + "\n")
