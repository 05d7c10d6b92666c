from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

# Device signatures are truncated when used to bucket attempts so that long
# or slightly varying client strings do not explode the key space.
IDENTITY_SIGNATURE_LENGTH = 50

UNKNOWN_ADDRESS = "unknown"

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclass(frozen=True)
class RequestContext:
    """Network identity of the request being evaluated."""

    ip_address: str
    device_signature: str = ""
    is_secure: bool = False

    @property
    def identity_key(self) -> str:
        return identity_key(self.ip_address, self.device_signature)


def identity_key(ip_address: str, device_signature: str) -> str:
    return f"{ip_address}:{(device_signature or '')[:IDENTITY_SIGNATURE_LENGTH]}"


def split_identity_key(key: str) -> tuple[str, str]:
    """Recover ``(ip, device signature)`` from an identity key.

    IPv6 addresses and user agents both contain colons, so the address is the
    longest prefix that parses as an IP; otherwise the first segment is used.
    """
    parts = key.split(":")
    for cut in range(len(parts) - 1, 0, -1):
        candidate = ":".join(parts[:cut])
        if _parse_ip(candidate) is not None:
            return candidate, ":".join(parts[cut:])
    head, _, tail = key.partition(":")
    return head, tail


def as_context(context_or_identity: Union[str, RequestContext]) -> RequestContext:
    if isinstance(context_or_identity, RequestContext):
        return context_or_identity
    ip_address, signature = split_identity_key(context_or_identity)
    return RequestContext(ip_address=ip_address or UNKNOWN_ADDRESS, device_signature=signature)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name) or headers.get(name.title())
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_ip(value: Optional[str]):
    if not value:
        return None
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


def parse_networks(values: Iterable[Union[str, IPNetwork]]) -> list[IPNetwork]:
    networks: list[IPNetwork] = []
    for value in values:
        if isinstance(value, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
            networks.append(value)
        else:
            networks.append(ipaddress.ip_network(str(value).strip(), strict=False))
    return networks


def _is_trusted(address: str, networks: Iterable[IPNetwork]) -> bool:
    ip = _parse_ip(address)
    if ip is None:
        return False
    return any(ip.version == net.version and ip in net for net in networks)


def _forwarded_chain(headers: Mapping[str, str]) -> list[str]:
    raw = _header(headers, "x-forwarded-for")
    if not raw:
        return []
    chain = []
    for part in raw.split(","):
        ip = _parse_ip(part)
        if ip is not None:
            chain.append(str(ip))
    return chain


def extract_client_ip(
    headers: Mapping[str, str],
    peer: Optional[str] = None,
    *,
    trusted_proxies: Iterable[Union[str, IPNetwork]] = (),
) -> str:
    """Resolve the client address behind an allow-listed set of proxies.

    Forwarding headers are only honoured when the socket peer is itself a
    trusted proxy. The ``x-forwarded-for`` chain is walked right to left and
    the first untrusted hop is the client; ``cf-connecting-ip`` and
    ``x-real-ip`` are fallbacks when the chain yields nothing. Any other
    peer is taken at face value.
    """
    if not peer:
        return UNKNOWN_ADDRESS
    networks = parse_networks(trusted_proxies)
    if not networks or not _is_trusted(peer, networks):
        return peer

    chain = _forwarded_chain(headers)
    if chain:
        chain.append(peer)
        while chain and _is_trusted(chain[-1], networks):
            chain.pop()
        if chain:
            return chain[-1]

    for name in ("cf-connecting-ip", "x-real-ip"):
        ip = _parse_ip(_header(headers, name))
        if ip is not None:
            return str(ip)
    return peer


def context_from_headers(
    headers: Mapping[str, str],
    peer: Optional[str] = None,
    *,
    scheme: str = "http",
    trusted_proxies: Iterable[Union[str, IPNetwork]] = (),
) -> RequestContext:
    return RequestContext(
        ip_address=extract_client_ip(headers, peer, trusted_proxies=trusted_proxies),
        device_signature=_header(headers, "user-agent") or "",
        is_secure=scheme == "https",
    )
