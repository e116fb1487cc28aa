"""
Create or refresh the Gmail OAuth token used by a mailwatch account.

Usage:
    python scripts/bootstrap_oauth.py ./credentials/token_me.json

The token path is what the account's ``credential_ref`` must point to
(MAIL_CREDENTIAL for a single account with MAIL_PROVIDER=gmail).
"""

import argparse
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from googleapiclient.discovery import build

from mailwatch.auth import GMAIL_READONLY_SCOPES, TokenExpiredError, ensure_valid_credentials


def check_gmail(creds) -> None:
    svc = build("gmail", "v1", credentials=creds, cache_discovery=False)
    profile = svc.users().getProfile(userId="me").execute()
    print(f"[OK] Gmail: {profile.get('emailAddress')} ({profile.get('messagesTotal', 0)} messages)")


def main() -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Authorize Gmail read-only access for mailwatch")
    parser.add_argument(
        "token_path",
        nargs="?",
        default=os.getenv("MAIL_CREDENTIAL") or "./credentials/token_gmail.json",
        help="Where to store the authorized-user token",
    )
    args = parser.parse_args()

    scopes_str = os.getenv("GOOGLE_GMAIL_SCOPES", "")
    scopes = [s.strip() for s in scopes_str.split(",") if s.strip()] or GMAIL_READONLY_SCOPES
    token_path = Path(args.token_path)

    print(f"Token:  {token_path}")
    print(f"Scopes: {', '.join(scopes)}")

    try:
        creds = ensure_valid_credentials(str(token_path), scopes, auto_reauthorize=True)
    except (FileNotFoundError, TokenExpiredError) as e:
        print(f"[ERROR] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n[ERROR] Authorization cancelled by user")
        sys.exit(1)

    saved = json.loads(token_path.read_text(encoding="utf-8"))
    if not saved.get("refresh_token"):
        print("[WARN] Token has no refresh token; it cannot be renewed automatically.")
        print("       Revoke access at https://myaccount.google.com/permissions and run again.")

    try:
        check_gmail(creds)
    except Exception as e:
        print(f"[WARN] Gmail check failed: {e}")


if __name__ == "__main__":
    main()
