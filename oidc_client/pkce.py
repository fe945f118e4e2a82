"""
PKCE (RFC 7636) and authorization request helpers for login initiation.
S256 only; state generation.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import urlencode

RESPONSE_TYPE_CODE = "code"


def generate_state() -> str:
    """Opaque value for CSRF protection; returned in the redirect back."""
    return secrets.token_urlsafe(32)


def code_challenge_for(code_verifier: str) -> str:
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """
    Generate code_verifier and code_challenge (S256).
    Returns (code_verifier, code_challenge). Verifier is 43 chars (256 bits entropy).
    """
    # 32 bytes -> 43 chars base64url (RFC 7636 recommendation)
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, code_challenge_for(code_verifier)


def build_authorize_url(
    *,
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str | None = None,
    extras: dict[str, str] | None = None,
) -> str:
    """Build the provider authorization URL; extras are forwarded verbatim after the standard params."""
    params = {
        "response_type": RESPONSE_TYPE_CODE,
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": scope,
        "state": state,
    }
    if code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    for key, value in (extras or {}).items():
        params.setdefault(key, value)
    separator = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{separator}{urlencode(params)}"
