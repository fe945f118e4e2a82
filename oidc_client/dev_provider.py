"""
Development OpenID Provider. In-memory, auto-consent; for local development against the client
and for the test suite (served in-process through httpx.ASGITransport).
Discovery, GET /authorize, POST /token (authorization_code with optional S256 PKCE, refresh_token
with rotation), POST /revoke (RFC 7009). ID and access tokens are HS256 JWTs.
Do not expose in production.
"""
import logging
import secrets
import time
from dataclasses import dataclass, field
from urllib.parse import urlencode, urlsplit

import jwt
from fastapi import APIRouter, FastAPI, Form, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse

from oidc_client.config import DEV_ISSUER, DEV_TOKEN_TTL
from oidc_client.pkce import code_challenge_for

logger = logging.getLogger(__name__)

# Authorization code lifetime (seconds): short-lived
CODE_TTL_SECONDS = 30

DEV_SUBJECT = "dev-user"

ID_TOKEN_JWT = "jwt"
ID_TOKEN_NONE = "none"
ID_TOKEN_MALFORMED = "malformed"


@dataclass
class IssuedCode:
    client_id: str
    redirect_uri: str
    scope: str
    code_challenge: str | None
    code_challenge_method: str | None
    nonce: str | None
    expires_at: float
    used: bool = False


@dataclass
class RefreshGrant:
    client_id: str
    scope: str
    revoked: bool = False


@dataclass
class ProviderLog:
    """What clients sent, for inspection."""

    authorizations: list[dict] = field(default_factory=list)
    token_requests: list[dict] = field(default_factory=list)
    revocations: list[dict] = field(default_factory=list)


def _oauth_error(status_code: int, error: str, description: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "error_description": description})


class DevProvider:
    def __init__(
        self,
        issuer: str = DEV_ISSUER,
        *,
        token_ttl: int = DEV_TOKEN_TTL,
        signing_secret: str | None = None,
        revocation: bool = True,
    ):
        self.issuer = issuer.rstrip("/")
        self.token_ttl = token_ttl
        self.revocation = revocation
        self.id_token_mode = ID_TOKEN_JWT
        # Set to make /token or /revoke answer 503, e.g. to exercise renewal and logout failures
        self.fail_token_requests = False
        self.fail_revocation = False
        self.log = ProviderLog()
        self._secret = signing_secret or secrets.token_urlsafe(32)
        self._codes: dict[str, IssuedCode] = {}
        self._refresh_tokens: dict[str, RefreshGrant] = {}
        self.app = self._build_app()

    def discovery_document(self) -> dict:
        document = {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/authorize",
            "token_endpoint": f"{self.issuer}/token",
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code", "refresh_token"],
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": ["HS256"],
            "code_challenge_methods_supported": ["S256"],
        }
        if self.revocation:
            document["revocation_endpoint"] = f"{self.issuer}/revoke"
        return document

    def refresh_token_revoked(self, token: str) -> bool:
        grant = self._refresh_tokens.get(token)
        return grant is not None and grant.revoked

    def _issue_tokens(self, client_id: str, scope: str, nonce: str | None) -> dict:
        now = int(time.time())
        exp = now + self.token_ttl
        access_token = jwt.encode(
            {"iss": self.issuer, "sub": DEV_SUBJECT, "aud": client_id, "exp": exp, "iat": now, "scope": scope},
            self._secret,
            algorithm="HS256",
        )
        refresh_token = secrets.token_urlsafe(48)
        self._refresh_tokens[refresh_token] = RefreshGrant(client_id=client_id, scope=scope)
        response = {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": self.token_ttl,
            "scope": scope,
            "refresh_token": refresh_token,
        }
        if "openid" in scope.split() and self.id_token_mode != ID_TOKEN_NONE:
            if self.id_token_mode == ID_TOKEN_MALFORMED:
                response["id_token"] = "not-a-jwt"
            else:
                claims = {"iss": self.issuer, "sub": DEV_SUBJECT, "aud": client_id, "exp": exp, "iat": now}
                if nonce:
                    claims["nonce"] = nonce
                response["id_token"] = jwt.encode(claims, self._secret, algorithm="HS256")
        return response

    def _build_app(self) -> FastAPI:
        app = FastAPI(title="Dev OpenID Provider", version="0.1.0")
        # Endpoints live under the issuer path, e.g. /realm/token for https://idp/realm
        router = APIRouter()

        @app.get("/health")
        def health():
            return {"status": "ok", "service": "dev_provider"}

        @router.get("/.well-known/openid-configuration")
        def openid_configuration():
            """OpenID Connect discovery document."""
            return self.discovery_document()

        @router.get("/authorize")
        def authorize(
            response_type: str | None = None,
            client_id: str | None = None,
            redirect_uri: str | None = None,
            scope: str = "openid",
            state: str | None = None,
            code_challenge: str | None = None,
            code_challenge_method: str | None = None,
            nonce: str | None = None,
        ):
            """Auto-consent: redirect straight back with code (or error) and state."""
            if not redirect_uri:
                raise _oauth_error(400, "invalid_request", "redirect_uri is required")
            self.log.authorizations.append(
                {"client_id": client_id, "redirect_uri": redirect_uri, "scope": scope, "state": state,
                 "code_challenge": code_challenge, "code_challenge_method": code_challenge_method}
            )
            params: dict[str, str] = {}
            if response_type != "code" or not client_id:
                params["error"] = "invalid_request"
                params["error_description"] = "response_type=code and client_id are required"
            elif code_challenge and code_challenge_method != "S256":
                params["error"] = "invalid_request"
                params["error_description"] = "Only S256 code_challenge_method is supported"
            else:
                code = secrets.token_urlsafe(32)
                self._codes[code] = IssuedCode(
                    client_id=client_id,
                    redirect_uri=redirect_uri,
                    scope=scope,
                    code_challenge=code_challenge,
                    code_challenge_method=code_challenge_method,
                    nonce=nonce,
                    expires_at=time.time() + CODE_TTL_SECONDS,
                )
                params["code"] = code
                params["session_state"] = secrets.token_hex(8)
            if state:
                params["state"] = state
            separator = "&" if "?" in redirect_uri else "?"
            return RedirectResponse(url=f"{redirect_uri}{separator}{urlencode(params)}", status_code=302)

        @router.post("/token")
        def token(
            grant_type: str = Form(...),
            client_id: str = Form(...),
            client_secret: str | None = Form(None),
            code: str | None = Form(None),
            redirect_uri: str | None = Form(None),
            code_verifier: str | None = Form(None),
            refresh_token: str | None = Form(None),
        ):
            form = {
                "grant_type": grant_type,
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
                "refresh_token": refresh_token,
            }
            self.log.token_requests.append({k: v for k, v in form.items() if v is not None})
            if self.fail_token_requests:
                raise _oauth_error(503, "temporarily_unavailable", "Token endpoint unavailable")
            if grant_type == "authorization_code":
                return self._token_authorization_code(code, redirect_uri, client_id, code_verifier)
            if grant_type == "refresh_token":
                return self._token_refresh_token(refresh_token, client_id)
            raise _oauth_error(
                400, "unsupported_grant_type", "Only authorization_code and refresh_token are supported"
            )

        @router.post("/revoke")
        def revoke(
            token: str = Form(...),
            token_type_hint: str | None = Form(None),
            client_id: str | None = Form(None),
        ):
            """RFC 7009: 200 for valid requests, even if the token is unknown."""
            self.log.revocations.append({"token": token, "token_type_hint": token_type_hint, "client_id": client_id})
            if self.fail_revocation:
                return JSONResponse(status_code=503, content={"error": "temporarily_unavailable"})
            grant = self._refresh_tokens.get(token.strip())
            if grant:
                grant.revoked = True
                logger.debug("Revoked refresh token for client_id=%s", grant.client_id)
            return {}

        app.include_router(router, prefix=urlsplit(self.issuer).path)
        return app

    def _token_authorization_code(
        self, code: str | None, redirect_uri: str | None, client_id: str, code_verifier: str | None
    ) -> dict:
        if not code or not redirect_uri:
            raise _oauth_error(400, "invalid_request", "code and redirect_uri are required")
        issued = self._codes.get(code)
        if not issued:
            raise _oauth_error(400, "invalid_grant", "Invalid or expired authorization code")
        if issued.used:
            raise _oauth_error(400, "invalid_grant", "Authorization code already used")
        if issued.expires_at < time.time():
            raise _oauth_error(400, "invalid_grant", "Authorization code expired")
        if issued.client_id != client_id:
            raise _oauth_error(400, "invalid_grant", "Client mismatch")
        if issued.redirect_uri != redirect_uri:
            raise _oauth_error(400, "invalid_grant", "redirect_uri mismatch")
        if issued.code_challenge:
            if not code_verifier or code_challenge_for(code_verifier) != issued.code_challenge:
                raise _oauth_error(400, "invalid_grant", "PKCE verification failed")
        issued.used = True
        return self._issue_tokens(client_id, issued.scope, issued.nonce)

    def _token_refresh_token(self, refresh_token: str | None, client_id: str) -> dict:
        if not refresh_token:
            raise _oauth_error(400, "invalid_request", "refresh_token is required")
        grant = self._refresh_tokens.get(refresh_token)
        if not grant or grant.revoked:
            raise _oauth_error(400, "invalid_grant", "Invalid or revoked refresh token")
        if grant.client_id != client_id:
            raise _oauth_error(400, "invalid_grant", "Client mismatch")
        # Rotate: revoke old, issue new refresh token
        grant.revoked = True
        logger.info("refresh_token grant: new tokens issued for client_id=%s (refresh token rotated)", client_id)
        return self._issue_tokens(client_id, grant.scope, None)


provider = DevProvider()
app = provider.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "oidc_client.dev_provider:app",
        host="127.0.0.1",
        port=9000,
        reload=True,
    )
