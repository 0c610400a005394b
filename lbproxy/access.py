"""Client access rules: allow or deny by IP address or network."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable
from dataclasses import dataclass, field

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def _normalize(ip: str | IPAddress) -> IPAddress:
    if isinstance(ip, str):
        ip = ipaddress.ip_address(ip)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


@dataclass(frozen=True)
class AccessRule:
    """An allow or deny rule for a single IP or a network."""

    allow: bool
    ip: IPAddress | None = None
    network: IPNetwork | None = None

    @property
    def is_network(self) -> bool:
        return self.network is not None

    def matches(self, ip: str | IPAddress) -> bool:
        """True if the address is covered by this rule."""
        address = _normalize(ip)
        if self.network is not None:
            return address in self.network
        return address == self.ip


def parse_access_rule(rule: str) -> AccessRule:
    """Parse ``"allow <ip|cidr>"`` or ``"deny <ip|cidr>"``."""
    parts = rule.split(" ")
    if len(parts) != 2:
        raise ValueError("Bad access rule format: " + rule)
    action, target = parts
    if action not in ("allow", "deny"):
        raise ValueError("Cant parse rule definition " + rule)
    allow = action == "allow"

    try:
        return AccessRule(allow=allow, ip=_normalize(target))
    except ValueError:
        pass

    if "/" in target:
        try:
            return AccessRule(allow=allow, network=ipaddress.ip_network(target, strict=False))
        except ValueError:
            pass

    raise ValueError("Cant parse acces rule target, not an ip or cidr: " + target)


@dataclass
class Access:
    """An ordered chain of rules with a default decision."""

    allow_default: bool = True
    rules: list[AccessRule] = field(default_factory=list)

    @classmethod
    def from_rules(cls, rules: Iterable[str], default: str = "") -> Access:
        """Build from rule strings; ``default`` is ``"allow"`` (if empty) or ``"deny"``."""
        if default == "":
            default = "allow"
        if default not in ("allow", "deny"):
            raise ValueError("AccessConfig Unexpected Default: " + default)
        return cls(
            allow_default=default == "allow",
            rules=[parse_access_rule(rule) for rule in rules],
        )

    def allows(self, ip: str | IPAddress) -> bool:
        """Decide by the first matching rule, else by the default."""
        address = _normalize(ip)
        for rule in self.rules:
            if rule.matches(address):
                return rule.allow
        return self.allow_default