"""
Client fingerprint construction.

A fingerprint identifies the browser session that is allowed to continue
an attempt. It is the plain concatenation, in this order, of:

1. the session token of the caller,
2. the client IP address, unless it lies in an exempt subnet,
3. the raw User-Agent header.

No delimiter is placed between the parts. Existing locks were issued over
this exact string, so changing the layout would block every attempt that
is currently in progress.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_SUBNET_SPLIT = re.compile(r'[\s,]+')


@dataclass(frozen=True)
class RequestContext:
    """
    Per-request client identity, passed explicitly into the gate.

    The host builds one of these from the incoming request; nothing in
    attemptlock reads ambient request state.
    """
    session_token: str = ""
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[int] = None


def parse_subnets(value: Union[None, str, Iterable[str]]) -> List[Network]:
    """
    Parse an exempt-subnet list.

    Accepts a comma or whitespace separated string ("88.0.0.0/8, 77.77.0.0/16")
    or an iterable of entries. A bare address is treated as a single-host
    network. Invalid entries are logged and skipped.
    """
    if value is None:
        return []
    if isinstance(value, str):
        entries = _SUBNET_SPLIT.split(value)
    else:
        entries = list(value)

    networks: List[Network] = []
    for entry in entries:
        entry = (entry or "").strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Ignoring invalid exempt subnet %r", entry)
    return networks


def address_in_subnets(client_ip: Optional[str], subnets: Sequence[Network]) -> bool:
    """Check if an IP address is within any of the given networks."""
    if not client_ip or not subnets:
        return False
    try:
        addr = ipaddress.ip_address(client_ip.strip())
    except ValueError:
        return False
    # Mixed IPv4/IPv6 membership is simply False.
    return any(addr in net for net in subnets)


def build_fingerprint(
    session_key: Optional[str],
    client_ip: Optional[str],
    user_agent: Optional[str],
    exempt_subnets: Sequence[Network] = ()
) -> str:
    """
    Build the fingerprint string for one request.

    Pure function; always returns a string, possibly with empty parts.
    """
    parts = [session_key or ""]

    if client_ip and not address_in_subnets(client_ip, exempt_subnets):
        parts.append(client_ip)

    parts.append(user_agent or "")
    return "".join(parts)


def fingerprint_for(ctx: RequestContext, exempt_subnets: Sequence[Network] = ()) -> str:
    """Build the fingerprint for a RequestContext."""
    return build_fingerprint(ctx.session_token, ctx.client_ip, ctx.user_agent, exempt_subnets)
