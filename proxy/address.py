"""Proxy host addressing: ``{port}-{sandboxIdentifier}.{domain}``."""

from __future__ import annotations

import re

from sandbox.errors import RoutingError

_HEX32 = re.compile(r"^[0-9a-f]{32}$")


def parse_sandbox_address(host: str) -> tuple[str, int]:
    """Split a proxy host into (sandbox_id, port).

    >>> parse_sandbox_address("4096-abc123def.example.com")
    ('abc123def', 4096)
    """
    hostname = (host or "").strip().split(":", 1)[0]
    labels = hostname.split(".")
    if len(labels) < 2 or not labels[0]:
        raise RoutingError(f"Invalid sandbox host: {host!r}")

    port_part, sep, sandbox_id = labels[0].partition("-")
    if not sep or not port_part or not sandbox_id:
        raise RoutingError(f"Invalid sandbox host: {host!r} (expected {{port}}-{{sandboxId}}.{{domain}})")
    if not port_part.isdigit():
        raise RoutingError(f"Invalid port in sandbox host: {port_part!r}")

    port = int(port_part)
    if not 0 < port < 65536:
        raise RoutingError(f"Port out of range in sandbox host: {port}")
    return sandbox_id, port


def restore_uuid_format(sandbox_id: str) -> str:
    """Re-hyphenate a DNS-safe 32-hex identifier into 8-4-4-4-12; anything else passes through."""
    if not _HEX32.match(sandbox_id):
        return sandbox_id
    s = sandbox_id
    return f"{s[:8]}-{s[8:12]}-{s[12:16]}-{s[16:20]}-{s[20:]}"


def format_sandbox_address(sandbox_id: str, port: int, domain: str) -> str:
    """Build the proxy host for ``port`` on a sandbox; the inverse of parse_sandbox_address."""
    if not 0 < port < 65536:
        raise RoutingError(f"Port out of range: {port}")
    if not sandbox_id or "." in sandbox_id:
        raise RoutingError(f"Sandbox id is not a DNS label: {sandbox_id!r}")
    return f"{port}-{sandbox_id}.{domain}"
