"""
Errors raised by the OpenID-Connect client. Each carries an OAuth2-style error code and description.
"""


class OIDCError(Exception):
    def __init__(self, error: str, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        super().__init__(f"{error}: {error_description}" if error_description else error)


class DiscoveryError(OIDCError):
    """Well-known configuration could not be fetched or is unusable."""


class AuthorizationError(OIDCError):
    """Provider redirected back with error=, or the returned state does not match ours."""


class TokenRequestError(OIDCError):
    """Token endpoint failed (authorization_code or refresh_token grant)."""

    def __init__(self, error: str, error_description: str | None = None, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(error, error_description)


class RevocationError(OIDCError):
    pass


class RenewalHeadroomError(OIDCError):
    """Provider issued a token whose lifetime is shorter than min_validity_seconds."""

    def __init__(self, auth_server_url: str, expires_in: float, min_validity_seconds: int):
        self.expires_in = expires_in
        self.min_validity_seconds = min_validity_seconds
        super().__init__(
            "renewal_headroom_unattainable",
            f"{auth_server_url} returned a token that expires in {expires_in:.0f} seconds; "
            f"min_validity_seconds value of {min_validity_seconds} is unattainable! Token renewal is disabled.",
        )
