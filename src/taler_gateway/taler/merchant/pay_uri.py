"""Pay URI normalization.

Merchant backends report pay URIs reachable from their own network, often
``http://`` on a private hostname, optionally with a ``taler+`` scheme prefix.
Checkout pages need a ``taler://pay/...`` URI that an end-user wallet resolves
against the public merchant endpoint.

Both functions are pure and idempotent.
"""

from __future__ import annotations

from urllib.parse import SplitResult, urljoin, urlsplit

TALER_PREFIX = "taler+"
WALLET_SCHEME = "taler://"

_DEFAULT_PORTS = {"http": 80, "https": 443}


def rewrite_public_pay_uri(pay_uri: str, public_base_url: str | None = None) -> str:
    """Rebase a backend pay URI onto the public merchant URL and normalize it.

    Args:
        pay_uri: URI as reported by the merchant backend.
        public_base_url: Public merchant URL, or None to keep the backend host.

    Returns:
        Wallet URI, or ``pay_uri`` unchanged when it cannot be interpreted.
    """
    has_prefix, raw = _strip_prefix(pay_uri)
    if _is_wallet_uri(raw):
        return pay_uri

    if not public_base_url or not public_base_url.strip():
        return normalize_to_wallet_pay_uri(pay_uri)

    public_base_url = public_base_url.strip()
    if _parse_absolute(public_base_url) is None:
        return normalize_to_wallet_pay_uri(pay_uri)

    # Keep instance-scoped paths intact when the backend sits behind a prefix
    marker = raw.lower().find("/instances/")
    if marker >= 0:
        path_and_query = raw[marker:]
    else:
        parsed = _parse_absolute(raw)
        if parsed is None:
            return pay_uri
        path_and_query = _path_and_query(parsed)

    rebuilt = urljoin(public_base_url.rstrip("/") + "/", path_and_query.lstrip("/"))
    return normalize_to_wallet_pay_uri(TALER_PREFIX + rebuilt if has_prefix else rebuilt)


def normalize_to_wallet_pay_uri(uri: str) -> str:
    """Convert an http(s) pay URI into ``taler://pay/{host[:port]}{path}``.

    ``taler://`` URIs are returned as-is. Anything that is not an absolute
    http(s) URI (after removing a ``taler+`` prefix) is returned unchanged.
    """
    if _is_wallet_uri(uri):
        return uri

    _, raw = _strip_prefix(uri)
    parsed = _parse_absolute(raw)
    if parsed is None:
        return uri
    if parsed.scheme.lower() not in _DEFAULT_PORTS:
        return uri

    try:
        host_port = _host_port(parsed)
    except ValueError:
        return uri
    return f"{WALLET_SCHEME}pay/{host_port}{_path_and_query(parsed)}"


def _is_wallet_uri(uri: str) -> bool:
    return uri[: len(WALLET_SCHEME)].lower() == WALLET_SCHEME


def _strip_prefix(uri: str) -> tuple[bool, str]:
    if uri[: len(TALER_PREFIX)].lower() == TALER_PREFIX:
        return True, uri[len(TALER_PREFIX):]
    return False, uri


def _parse_absolute(uri: str) -> SplitResult | None:
    try:
        parsed = urlsplit(uri)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return parsed


def _path_and_query(parsed: SplitResult) -> str:
    path = parsed.path or "/"
    if parsed.query:
        return f"{path}?{parsed.query}"
    return path


def _host_port(parsed: SplitResult) -> str:
    host = parsed.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parsed.port
    if port is None or port == _DEFAULT_PORTS[parsed.scheme.lower()]:
        return host
    return f"{host}:{port}"
