"""
Credential resolution for mail sources.

IMAP accounts reference a password (``env:NAME``, ``file:/path`` or a
literal). Gmail accounts reference an OAuth authorized-user token file that
is refreshed automatically and optionally re-authorized.
"""

from __future__ import annotations
import os
from pathlib import Path
from typing import Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from mailwatch.errors import ConfigurationError
from mailwatch.logging import logger

GMAIL_READONLY_SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]


class TokenExpiredError(Exception):
    """Raised when an OAuth token cannot be refreshed and needs re-authorization."""
    pass


def resolve_credential(ref: str) -> str:
    """
    Resolve a credential reference into the secret it points to.

    Args:
        ref: ``env:NAME`` (environment variable), ``file:/path`` (first line
            of a file) or a literal secret

    Raises:
        ConfigurationError: If the variable is unset or the file is unreadable
    """
    if ref.startswith("env:"):
        name = ref[4:].strip()
        value = os.getenv(name)
        if not value:
            raise ConfigurationError(f"Credential environment variable {name!r} is not set")
        return value

    if ref.startswith("file:"):
        path = Path(ref[5:].strip()).expanduser()
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise ConfigurationError(f"Cannot read credential file {path}: {e}") from e
        if not lines or not lines[0].strip():
            raise ConfigurationError(f"Credential file {path} is empty")
        return lines[0].strip()

    return ref


def reauthorize_token(
    token_path: str,
    scopes: list[str],
    client_secrets_path: Optional[str] = None,
) -> Credentials:
    """
    Run the installed-app OAuth flow and save the new token.

    Args:
        token_path: Where to save the token file
        scopes: OAuth scopes required
        client_secrets_path: Path to client_secret.json. If None, uses the
            GOOGLE_CLIENT_SECRETS environment variable.

    Raises:
        FileNotFoundError: If the client secrets file doesn't exist
    """
    if client_secrets_path is None:
        client_secrets_path = os.getenv("GOOGLE_CLIENT_SECRETS", "./credentials/client_secret.json")

    client_secrets = Path(client_secrets_path)
    if not client_secrets.exists():
        raise FileNotFoundError(
            f"Client secrets file not found: {client_secrets}. "
            f"Set GOOGLE_CLIENT_SECRETS or place client_secret.json in credentials/"
        )

    token_file = Path(token_path)
    token_file.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Starting OAuth re-authorization flow for {token_path}...")
    flow = InstalledAppFlow.from_client_secrets_file(str(client_secrets), scopes)
    creds = flow.run_local_server(port=0)

    if not creds.refresh_token:
        logger.warning(
            "No refresh token received. Revoke access at https://myaccount.google.com/permissions "
            "and authorize again to get one."
        )

    token_file.write_text(creds.to_json(), encoding="utf-8")
    logger.info(f"New token saved to {token_path}")
    return creds


def ensure_valid_credentials(
    token_path: str,
    scopes: list[str],
    auto_reauthorize: bool = False,
) -> Credentials:
    """
    Load credentials and refresh them if needed.

    Args:
        token_path: Path to the token JSON file
        scopes: OAuth scopes required
        auto_reauthorize: Start the browser flow when refresh fails instead of
            raising TokenExpiredError

    Raises:
        FileNotFoundError: If the token file doesn't exist
        TokenExpiredError: If refresh fails and auto_reauthorize is False
    """
    token_file = Path(token_path)
    if not token_file.exists():
        if auto_reauthorize:
            logger.warning(f"Token file not found: {token_path}. Starting re-authorization...")
            return reauthorize_token(token_path, scopes)
        raise FileNotFoundError(f"Token file not found: {token_path}")

    creds = Credentials.from_authorized_user_file(str(token_file), scopes)
    if creds.valid:
        return creds

    if creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.error(f"Token refresh failed for {token_path}: {e}")
            if auto_reauthorize:
                return reauthorize_token(token_path, scopes)
            raise TokenExpiredError(
                f"Token refresh failed for {token_path}; the refresh token expired or was revoked"
            ) from e

        try:
            token_file.write_text(creds.to_json(), encoding="utf-8")
            logger.debug(f"Credentials refreshed for {token_path}")
        except OSError as e:
            # read-only mounts: the refreshed token still works until it expires
            logger.warning(f"Credentials refreshed but cannot save to {token_path}: {e}")
        return creds

    logger.warning(f"No refresh token found for {token_path}. Re-authorization required.")
    if auto_reauthorize:
        return reauthorize_token(token_path, scopes)
    raise TokenExpiredError(f"No refresh token for {token_path}; re-authorization required")
