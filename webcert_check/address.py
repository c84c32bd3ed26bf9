"""
Target address normalization.
"""

from dataclasses import dataclass

DEFAULT_PORT = "443"


@dataclass(frozen=True)
class TargetAddress:
    """A hostname plus the port to probe it on."""

    hostname: str
    port: str = DEFAULT_PORT

    def __str__(self) -> str:
        return f"{self.hostname}:{self.port}"


def normalize(raw: str) -> TargetAddress:
    """
    Turn ``host`` or ``host:port`` into a TargetAddress.

    A missing port defaults to 443. Only the first colon separates the host
    from the port, so IPv6 literals are not supported; such input produces an
    address that fails to connect rather than an exception here.
    """
    complete = raw if ":" in raw else f"{raw}:{DEFAULT_PORT}"
    hostname, _, port = complete.partition(":")
    return TargetAddress(hostname=hostname, port=port)
