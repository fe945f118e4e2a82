"""
Find and remove the OAuth2 redirect-back parameters (code, state, error, session_state) in an address.
Providers put them in the query (response_mode=query) or in the fragment (response_mode=fragment);
both places are checked.
"""
from urllib.parse import parse_qsl, unquote_plus

PROTOCOL_PARAMS = ("code", "state", "error", "session_state")

LOCATION_QUERY = "query"
LOCATION_FRAGMENT = "fragment"


def _split(address: str) -> tuple[str, str | None, str | None]:
    """(origin + path, query or None, fragment or None); None means the separator is absent."""
    base, hash_mark, fragment = address.partition("#")
    prefix, question_mark, query = base.partition("?")
    return prefix, (query if question_mark else None), (fragment if hash_mark else None)


def _parse_params(raw: str | None) -> dict[str, str]:
    params: dict[str, str] = {}
    if not raw:
        return params
    for key, value in parse_qsl(raw, keep_blank_values=True):
        params.setdefault(key, value)
    return params


def _has_protocol_params(params: dict[str, str]) -> bool:
    return any(name in params for name in PROTOCOL_PARAMS)


def _without_protocol_params(raw: str) -> str:
    # Filter raw segments instead of re-encoding so unrelated parameters keep their exact spelling
    kept = [
        segment
        for segment in raw.split("&")
        if unquote_plus(segment.partition("=")[0]) not in PROTOCOL_PARAMS
    ]
    return "&".join(kept)


class CredentialParser:
    """
    Parse an address for redirect-back parameters and produce the address without them.
    parse() remembers which location (query or fragment) held the parameters; scrub() edits only that one.
    """

    def __init__(self, address: str):
        self.address = address
        self.location: str | None = None
        self._parsed: dict[str, str] | None = None

    def parse(self) -> dict[str, str]:
        """All parameters of the location holding the protocol parameters; empty if neither does."""
        if self._parsed is not None:
            return dict(self._parsed)
        _, query, fragment = _split(self.address)
        params = _parse_params(query)
        if _has_protocol_params(params):
            self.location = LOCATION_QUERY
        else:
            params = _parse_params(fragment)
            if _has_protocol_params(params):
                self.location = LOCATION_FRAGMENT
            else:
                params = {}
        self._parsed = params
        return dict(params)

    def scrub(self) -> str:
        """The address with code, state, error and session_state removed; unchanged if none were found."""
        self.parse()
        if self.location is None:
            return self.address

        prefix, query, fragment = _split(self.address)
        if self.location == LOCATION_QUERY:
            query = _without_protocol_params(query or "") or None
        else:
            fragment = _without_protocol_params(fragment or "") or None

        address = prefix
        if query is not None:
            address += "?" + query
        if fragment is not None:
            address += "#" + fragment
        return address


def strip_protocol_params(address: str) -> str:
    return CredentialParser(address).scrub()
