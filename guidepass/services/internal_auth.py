from __future__ import annotations

import ipaddress
import secrets
from functools import lru_cache

from fastapi import Request

INTERNAL_TOKEN_HEADER = "X-Internal-Token"
WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


def is_valid_shared_secret(*, expected: str, received: str | None) -> bool:
    if not expected or not received:
        return False
    return secrets.compare_digest(expected, received)


def is_internal_request_authenticated(request: Request, *, expected_token: str) -> bool:
    return is_valid_shared_secret(
        expected=expected_token,
        received=request.headers.get(INTERNAL_TOKEN_HEADER),
    )


def is_webhook_request_authenticated(request: Request, *, expected_secret: str) -> bool:
    return is_valid_shared_secret(
        expected=expected_secret,
        received=request.headers.get(WEBHOOK_SECRET_HEADER),
    )


@lru_cache(maxsize=32)
def _parse_allowlist(
    allowlist: str,
) -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
    networks: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = []
    for raw_entry in allowlist.split(","):
        entry = raw_entry.strip()
        if not entry:
            continue

        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            continue

    return tuple(networks)


def extract_client_ip(request: Request) -> str | None:
    if request.client is None:
        return None
    return request.client.host


def is_client_ip_allowed(*, client_ip: str | None, allowlist: str) -> bool:
    if client_ip is None:
        return False

    try:
        parsed_ip = ipaddress.ip_address(client_ip)
    except ValueError:
        return False

    networks = _parse_allowlist(allowlist)
    if not networks:
        return False

    return any(parsed_ip in network for network in networks)
