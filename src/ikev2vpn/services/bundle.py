"""Export client configuration for Windows, Android, iOS and macOS."""

from __future__ import annotations

import base64
import json
import logging
import pathlib
import uuid
from typing import TYPE_CHECKING

from jinja2 import Environment, FileSystemLoader

from ikev2vpn import helpers
from ikev2vpn.exceptions import CommandError
from ikev2vpn.models.context import ClientBundle

if TYPE_CHECKING:
    from ikev2vpn.models.context import ExportTarget
    from ikev2vpn.services.nss import CertificateDatabase

logger = logging.getLogger("ikev2vpn")

BASE_DIR = pathlib.Path(__file__).parent
TEMPLATES_DIR = BASE_DIR.joinpath("templates")
TEMPLATES_ENV = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)

# Line length of the base64 encoded .p12 file in the client profiles.
BASE64_WIDTH = 52


def encode_p12(path: pathlib.Path) -> list[str]:
    """Return the base64 encoded .p12 file, split in lines."""
    try:
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    except OSError as err:
        msg = "Could not encode .p12 file."
        raise CommandError(msg) from err
    if not encoded:
        msg = "Could not encode .p12 file."
        raise CommandError(msg)
    return [
        encoded[i : i + BASE64_WIDTH] for i in range(0, len(encoded), BASE64_WIDTH)
    ]


def new_uuid() -> str:
    """Generate a random UUID."""
    return str(uuid.uuid4())


def export_p12_file(
    db: CertificateDatabase,
    target: ExportTarget,
    client_name: str,
    password: str | None,
) -> pathlib.Path:
    """Export the client certificate, key and CA to a password protected file."""
    p12_path = target.path(client_name, ".p12")
    logger.info("Exporting %s.", p12_path)
    # pk12util truncates an existing file and keeps its mode.
    p12_path.touch(mode=0o600)
    p12_path.chmod(0o600)
    try:
        db.export_p12(client_name, p12_path, password)
    finally:
        if p12_path.exists():
            helpers.secure_file(p12_path, target.owner)
    return p12_path


def render_mobileconfig(
    client_name: str,
    server_addr: str,
    p12_lines: list[str],
    ca_base64: str,
) -> str:
    """Render the iOS and macOS profile."""
    template = TEMPLATES_ENV.get_template("mobileconfig.j2")
    uuids = {
        key: new_uuid()
        for key in (
            "p12",
            "p12_identifier",
            "vpn",
            "vpn_identifier",
            "ca",
            "ca_identifier",
            "profile",
            "profile_identifier",
        )
    }
    return template.render(
        client_name=client_name,
        server_addr=server_addr,
        p12_base64="\n".join(p12_lines),
        ca_base64=ca_base64,
        uuid=uuids,
    )


def render_sswan(server_addr: str, p12_lines: list[str]) -> str:
    """Render the strongSwan VPN client profile for Android."""
    # Every base64 line ends with an escaped line break.
    profile = {
        "uuid": new_uuid(),
        "name": f"IKEv2 VPN profile ({server_addr})",
        "type": "ikev2-cert",
        "remote": {"addr": server_addr},
        "local": {
            "p12": "".join(f"{line}\n" for line in p12_lines),
            "rsa-pss": "true",
        },
        "ike-proposal": "aes256-sha256-modp2048",
        "esp-proposal": "aes256gcm16",
    }
    return json.dumps(profile, indent=2) + "\n"


def export_client_bundle(
    db: CertificateDatabase,
    target: ExportTarget,
    client_name: str,
    server_addr: str,
    password: str | None,
) -> ClientBundle:
    """Export the .p12, .mobileconfig and .sswan files of a client.

    Files of an earlier export of the same client are overwritten.
    """
    p12_path = export_p12_file(db, target, client_name, password)
    p12_lines = encode_p12(p12_path)
    ca_base64 = db.ca_certificate_base64()

    mc_path = target.path(client_name, ".mobileconfig")
    logger.info("Creating %s for iOS and macOS.", mc_path)
    helpers.write_private_file(
        mc_path,
        render_mobileconfig(client_name, server_addr, p12_lines, ca_base64),
        target.owner,
    )

    sswan_path = target.path(client_name, ".sswan")
    logger.info("Creating %s for Android.", sswan_path)
    helpers.write_private_file(
        sswan_path,
        render_sswan(server_addr, p12_lines),
        target.owner,
    )

    return ClientBundle(
        client_name=client_name,
        p12=p12_path,
        mobileconfig=mc_path,
        sswan=sswan_path,
        password=password,
    )
