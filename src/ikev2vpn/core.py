"""Run the IKEv2 workflows.

Every step either succeeds or raises, there is no rollback of the steps that
already completed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ikev2vpn import config
from ikev2vpn.exceptions import PreconditionError
from ikev2vpn.services import bundle, libreswan, nss, packages

if TYPE_CHECKING:
    from ikev2vpn.models.context import ClientBundle, Environment, SetupOptions
    from ikev2vpn.models.defaults import SetupDefaults

logger = logging.getLogger("ikev2vpn")


def check_ca_cert_absent(db: nss.CertificateDatabase) -> None:
    """Verify no CA was created by an earlier run."""
    if db.exists(config.CA_NAME):
        msg = f"Certificate '{config.CA_NAME}' already exists."
        raise PreconditionError(msg)


def check_server_cert_absent(db: nss.CertificateDatabase, server_addr: str) -> None:
    """Verify there is no certificate for the server address yet."""
    if db.exists(server_addr):
        msg = f"Certificate '{server_addr}' already exists.\nAbort. No changes were made."
        raise PreconditionError(msg)


def check_client_cert_absent(db: nss.CertificateDatabase, client_name: str) -> None:
    """Verify there is no certificate for the client yet."""
    if db.exists(client_name):
        msg = f"Client '{client_name}' already exists.\nAbort. No changes were made."
        raise PreconditionError(msg)


def _password(use_own_password: bool) -> str | None:  # noqa: FBT001
    if use_own_password:
        return None
    return nss.generate_password()


def setup_ikev2(
    env: Environment,
    db: nss.CertificateDatabase,
    options: SetupOptions,
    defaults: SetupDefaults,
) -> ClientBundle:
    """Create the certificates, export the first client and add the connection."""
    check_ca_cert_absent(db)
    logger.info(
        "Setting up IKEv2 for %s with client '%s'.",
        options.server_addr,
        options.client_name,
    )

    packages.apply_ubuntu1804_nss_fix(env.os)
    db.create_ca()
    db.create_server_cert(options.server_addr, use_dns_name=options.use_dns_name)
    db.create_client_cert(options.client_name, options.client_validity)
    client_bundle = bundle.export_client_bundle(
        db,
        env.export,
        options.client_name,
        options.server_addr,
        _password(options.use_own_password),
    )
    libreswan.write_connection(env, options, defaults.address_pool)
    libreswan.restart_ipsec()

    return client_bundle


def add_client(
    env: Environment,
    db: nss.CertificateDatabase,
    client_name: str,
    validity: int,
    *,
    use_own_password: bool = False,
) -> ClientBundle:
    """Create a client certificate and export its configuration."""
    logger.info("Adding IKEv2 client '%s'.", client_name)
    server_addr = libreswan.get_server_address()
    db.create_client_cert(client_name, validity)
    return bundle.export_client_bundle(
        db,
        env.export,
        client_name,
        server_addr,
        _password(use_own_password),
    )


def export_client(
    env: Environment,
    db: nss.CertificateDatabase,
    client_name: str,
    *,
    use_own_password: bool = False,
) -> ClientBundle:
    """Export the configuration of an existing client."""
    logger.info("Exporting IKEv2 client '%s'.", client_name)
    server_addr = libreswan.get_server_address()
    return bundle.export_client_bundle(
        db,
        env.export,
        client_name,
        server_addr,
        _password(use_own_password),
    )


def list_clients(db: nss.CertificateDatabase) -> list[str]:
    """Return the names of the existing clients."""
    return db.list_clients()


def remove_ikev2(db: nss.CertificateDatabase) -> None:
    """Remove the IKEv2 connection and every certificate and key.

    Running it again after a complete removal changes nothing.
    """
    libreswan.remove_connection()
    libreswan.restart_ipsec()

    logger.info("Deleting certificates and keys from the IPsec database.")
    for nickname in db.list_nicknames():
        if nickname == config.CA_NAME:
            continue
        db.revoke(nickname)
    # The CA goes last, the other certificates are signed by it.
    if db.exists(config.CA_NAME):
        db.revoke(config.CA_NAME)
