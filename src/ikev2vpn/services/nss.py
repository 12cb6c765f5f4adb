"""Manage certificates in the NSS database used by Libreswan."""

from __future__ import annotations

import logging
import os
import random
import secrets
import tempfile
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from ikev2vpn import config, helpers
from ikev2vpn.exceptions import CommandError, PreconditionError

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterator

logger = logging.getLogger("ikev2vpn")

# certutil -L prints two header lines before the certificates.
LIST_HEADER_LINES = 2


def generate_password() -> str:
    """Generate a random password for the exported client configuration."""
    password = "".join(
        secrets.choice(config.PASSWORD_ALPHABET) for _ in range(config.PASSWORD_LENGTH)
    )
    if len(password) != config.PASSWORD_LENGTH:
        msg = "Could not generate a random password for .p12 file."
        raise CommandError(msg)
    return password


def parse_nicknames(output: str) -> list[str]:
    """Parse the certificate nicknames from the output of 'certutil -L'.

    Every row is the nickname followed by the trust attributes, the nickname
    itself may contain spaces.
    """
    rows = [line for line in output.splitlines() if line.strip()]
    nicknames: list[str] = []
    for row in rows[LIST_HEADER_LINES:]:
        nickname = row.rstrip().rsplit(None, 1)[0].strip()
        if nickname:
            nicknames.append(nickname)
    return nicknames


@contextmanager
def noise_file() -> Iterator[str]:
    """Provide a file with fresh random data to seed key generation."""
    with tempfile.NamedTemporaryFile(prefix="ikev2vpn-noise-") as f:
        f.write(os.urandom(1024))
        f.flush()
        yield f.name


def random_delay() -> None:
    """Wait 1-3 seconds before generating a certificate signed by the CA."""
    time.sleep(random.randint(1, 3))  # noqa: S311


class CertificateDatabase:
    """Certificate operations on a Libreswan NSS database."""

    def __init__(self, db: str = config.NSS_DB) -> None:
        self.db = db

    def exists(self, label: str) -> bool:
        """Check if a certificate with the label is in the database."""
        try:
            helpers.run_cmd(["certutil", "-L", "-d", self.db, "-n", label])
        except CommandError:
            return False
        return True

    def list_nicknames(self) -> list[str]:
        """Return the labels of all certificates in the database."""
        proc = helpers.run_cmd(
            ["certutil", "-L", "-d", self.db],
            error="Could not list certificates in the IPsec database.",
        )
        return parse_nicknames(proc.stdout)

    def list_clients(self) -> list[str]:
        """Return the client certificate labels.

        The CA and any label with a period, e.g. the server address, are left out.
        """
        return [
            nickname
            for nickname in self.list_nicknames()
            if nickname != config.CA_NAME and "." not in nickname
        ]

    def create_ca(self) -> None:
        """Generate the self-signed CA certificate."""
        if self.exists(config.CA_NAME):
            msg = f"Certificate '{config.CA_NAME}' already exists."
            raise PreconditionError(msg)

        logger.info("Generating CA certificate.")
        with noise_file() as noise:
            helpers.run_cmd(
                [
                    "certutil",
                    "-z",
                    noise,
                    "-S",
                    "-x",
                    "-n",
                    config.CA_NAME,
                    "-s",
                    f"O={config.CERT_ORG},CN={config.CA_NAME}",
                    "-k",
                    "rsa",
                    "-g",
                    str(config.CERT_KEY_SIZE),
                    "-v",
                    str(config.CA_VALIDITY),
                    "-d",
                    self.db,
                    "-t",
                    "CT,,",
                    "-2",
                ],
                # Is this a CA certificate, path length constraint, is it critical.
                stdin="y\n\nN\n",
            )

    def create_server_cert(self, server_addr: str, *, use_dns_name: bool) -> None:
        """Generate the VPN server certificate, signed by the CA."""
        if self.exists(server_addr):
            msg = f"Certificate '{server_addr}' already exists."
            raise PreconditionError(msg)

        san = f"dns:{server_addr}" if use_dns_name else f"ip:{server_addr},dns:{server_addr}"
        logger.info("Generating VPN server certificate for %s.", server_addr)
        random_delay()
        with noise_file() as noise:
            helpers.run_cmd(
                [
                    "certutil",
                    "-z",
                    noise,
                    "-S",
                    "-c",
                    config.CA_NAME,
                    "-n",
                    server_addr,
                    "-s",
                    f"O={config.CERT_ORG},CN={server_addr}",
                    "-k",
                    "rsa",
                    "-g",
                    str(config.CERT_KEY_SIZE),
                    "-v",
                    str(config.SERVER_VALIDITY),
                    "-d",
                    self.db,
                    "-t",
                    ",,",
                    "--keyUsage",
                    "digitalSignature,keyEncipherment",
                    "--extKeyUsage",
                    "serverAuth",
                    "--extSAN",
                    san,
                ],
            )

    def create_client_cert(self, client_name: str, validity: int) -> None:
        """Generate a client certificate, signed by the CA."""
        if not config.CLIENT_VALIDITY_MIN <= validity <= config.CLIENT_VALIDITY_MAX:
            msg = "Invalid validity period."
            raise PreconditionError(msg)
        if self.exists(client_name):
            msg = f"Client '{client_name}' already exists."
            raise PreconditionError(msg)

        logger.info("Generating client certificate for %s.", client_name)
        random_delay()
        with noise_file() as noise:
            helpers.run_cmd(
                [
                    "certutil",
                    "-z",
                    noise,
                    "-S",
                    "-c",
                    config.CA_NAME,
                    "-n",
                    client_name,
                    "-s",
                    f"O={config.CERT_ORG},CN={client_name}",
                    "-k",
                    "rsa",
                    "-g",
                    str(config.CERT_KEY_SIZE),
                    "-v",
                    str(validity),
                    "-d",
                    self.db,
                    "-t",
                    ",,",
                    "--keyUsage",
                    "digitalSignature,keyEncipherment",
                    "--extKeyUsage",
                    "serverAuth,clientAuth",
                    "-8",
                    client_name,
                ],
            )

    def export_p12(
        self,
        label: str,
        path: pathlib.Path,
        password: str | None = None,
    ) -> None:
        """Export a certificate, its key and the CA to a PKCS#12 file.

        Without a password pk12util asks the operator for one on the terminal.
        """
        cmd = ["pk12util", "-d", self.db, "-n", label, "-o", str(path)]
        if password is None:
            helpers.run_cmd(cmd, capture=False, error="Could not export .p12 file.")
            return
        helpers.run_cmd(
            ["pk12util", "-W", password, *cmd[1:]],
            error="Could not export .p12 file.",
            secret=True,
        )

    def ca_certificate_base64(self) -> str:
        """Return the base64 encoded CA certificate without the PEM armor."""
        proc = helpers.run_cmd(
            ["certutil", "-L", "-d", self.db, "-n", config.CA_NAME, "-a"],
            error=f"Could not encode {config.CA_NAME} certificate.",
        )
        lines = [
            line
            for line in proc.stdout.splitlines()
            if line.strip() and "CERTIFICATE" not in line
        ]
        if not lines:
            msg = f"Could not encode {config.CA_NAME} certificate."
            raise CommandError(msg)
        return "\n".join(lines)

    def revoke(self, label: str) -> None:
        """Delete the private key of a certificate and then the certificate.

        A failure to delete the certificate is ignored, it may already be gone
        after an interrupted earlier run.
        """
        logger.info("Deleting certificate and key '%s'.", label)
        helpers.run_cmd(["certutil", "-F", "-d", self.db, "-n", label])
        helpers.run_cmd(["certutil", "-D", "-d", self.db, "-n", label], check=False)
