"""Network lookups: public IP discovery, version checks and downloads."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ikev2vpn import config, helpers
from ikev2vpn.exceptions import CommandError

if TYPE_CHECKING:
    import pathlib

logger = logging.getLogger("ikev2vpn")


def create_session() -> requests.Session:
    """Create a requests session with a bounded retry configuration."""
    session = requests.Session()
    retry_strategy = Retry(
        total=config.HTTP_RETRIES,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["HEAD", "GET"],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def fetch_text(url: str, params: dict[str, Any] | None = None) -> str | None:
    """Return the body of a GET request, or None if the request failed."""
    with create_session() as session:
        try:
            response = session.get(url, params=params, timeout=config.HTTP_TIMEOUT)
            response.raise_for_status()
        except requests.exceptions.RequestException as err:
            logger.debug("Request to %s failed: %s", url, err)
            return None
    return response.text.strip()


def get_public_ip() -> str:
    """Discover the public IPv4 address of this server.

    Returns an empty string when no valid address was found.
    """
    logger.info("Trying to auto discover IP of this server.")
    try:
        public_ip = helpers.run_cmd(
            [
                "dig",
                f"@{config.PUBLIC_IP_RESOLVER}",
                "-t",
                "A",
                "-4",
                config.PUBLIC_IP_NAME,
                "+short",
            ],
        ).stdout.strip()
    except CommandError:
        public_ip = ""
    if helpers.check_ip(public_ip):
        return public_ip

    public_ip = fetch_text(config.PUBLIC_IP_URL) or ""
    if helpers.check_ip(public_ip):
        return public_ip
    return ""


def check_swan_update(
    url: str,
    params: dict[str, Any],
    current_version: str,
) -> str | None:
    """Ask the version check endpoint for the recommended Libreswan version.

    A failing endpoint isn't an error, the check is skipped.
    """
    latest = fetch_text(url, params)
    if not latest or not config.SWAN_VER_RE.fullmatch(latest):
        return None
    if latest == current_version:
        return None
    logger.info("Libreswan %s is recommended.", latest)
    return latest


def download(urls: list[str], dest: pathlib.Path) -> None:
    """Download a file, trying the mirrors in order."""
    with create_session() as session:
        for url in urls:
            logger.info("Downloading %s.", url)
            try:
                with session.get(url, stream=True, timeout=config.DOWNLOAD_TIMEOUT) as r:
                    r.raise_for_status()
                    with dest.open("wb") as f:
                        for chunk in r.iter_content(chunk_size=65536):
                            f.write(chunk)
            except (requests.exceptions.RequestException, OSError) as err:
                logger.warning("Download from %s failed: %s", url, err)
                dest.unlink(missing_ok=True)
                continue
            return

    msg = f"Could not download {dest.name}."
    raise CommandError(msg)
