"""
Certificate probe for webcert-check.

Connects to a TLS endpoint, classifies handshake and validation failures,
checks the leaf certificate against the requested hostname and reports the
number of whole days until the leaf expires.
"""

import ipaddress
import math
import socket
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from cryptography import x509

from webcert_check.address import TargetAddress, normalize
from webcert_check.logger import get_logger, log_probe_start

# OpenSSL X509_V_ERR_* codes for a chain whose issuer is not trusted
UNTRUSTED_ISSUER_CODES = frozenset(
    {
        2,  # UNABLE_TO_GET_ISSUER_CERT
        18,  # DEPTH_ZERO_SELF_SIGNED_CERT
        19,  # SELF_SIGNED_CERT_IN_CHAIN
        20,  # UNABLE_TO_GET_ISSUER_CERT_LOCALLY
        21,  # UNABLE_TO_VERIFY_LEAF_SIGNATURE
    }
)

HOSTNAME_MISMATCH_CODES = frozenset(
    {
        62,  # HOSTNAME_MISMATCH
        64,  # IP_ADDRESS_MISMATCH
    }
)

# OpenSSL reasons raised when the peer does not speak TLS record framing
MALFORMED_RECORD_REASONS = frozenset(
    {
        "WRONG_VERSION_NUMBER",
        "RECORD_LAYER_FAILURE",
        "PACKET_LENGTH_TOO_LONG",
        "RECORD_LENGTH_MISMATCH",
        "UNKNOWN_PROTOCOL",
        "HTTP_REQUEST",
        "HTTPS_PROXY_REQUEST",
    }
)


class FailureKind(str, Enum):
    """Closed set of probe failure categories."""

    UNTRUSTED_ISSUER = "untrusted_issuer"
    MALFORMED_HANDSHAKE_RECORD = "malformed_handshake_record"
    HOSTNAME_MISMATCH = "hostname_mismatch"
    NO_CERTIFICATES_PRESENTED = "no_certificates_presented"
    OTHER_CONNECTION_ERROR = "other_connection_error"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    FailureKind.UNTRUSTED_ISSUER: "Unknown Authority Error",
    FailureKind.MALFORMED_HANDSHAKE_RECORD: "Record Header Error",
    FailureKind.HOSTNAME_MISMATCH: "Hostname Error",
    FailureKind.NO_CERTIFICATES_PRESENTED: "No certificates presented by the server",
    FailureKind.OTHER_CONNECTION_ERROR: "Other error",
}


@dataclass(frozen=True)
class ProbeSuccess:
    """Leaf certificate expiry for a probe that passed every check."""

    target: TargetAddress
    expiry_date: datetime
    days_remaining: int

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "target": str(self.target),
            "expiry_date": self.expiry_date.isoformat(),
            "days_remaining": self.days_remaining,
        }


@dataclass(frozen=True)
class ProbeFailure:
    """A classified probe failure. ``message`` is diagnostic only."""

    target: TargetAddress
    kind: FailureKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "target": str(self.target),
            "kind": self.kind.value,
            "message": self.message,
        }


ProbeOutcome = Union[ProbeSuccess, ProbeFailure]


def _is_untrusted_issuer(exc: BaseException) -> bool:
    return (
        isinstance(exc, ssl.SSLCertVerificationError)
        and getattr(exc, "verify_code", None) in UNTRUSTED_ISSUER_CODES
    )


def _is_malformed_record(exc: BaseException) -> bool:
    return isinstance(exc, ssl.SSLError) and getattr(exc, "reason", None) in MALFORMED_RECORD_REASONS


def _is_hostname_mismatch(exc: BaseException) -> bool:
    return (
        isinstance(exc, ssl.SSLCertVerificationError)
        and getattr(exc, "verify_code", None) in HOSTNAME_MISMATCH_CODES
    )


# Evaluated in order, first match wins
CONNECTION_ERROR_RULES: Tuple[Tuple[FailureKind, Callable[[BaseException], bool]], ...] = (
    (FailureKind.UNTRUSTED_ISSUER, _is_untrusted_issuer),
    (FailureKind.MALFORMED_HANDSHAKE_RECORD, _is_malformed_record),
    (FailureKind.HOSTNAME_MISMATCH, _is_hostname_mismatch),
)


def classify_connection_error(exc: BaseException) -> FailureKind:
    """Map a connection-establishment error onto a FailureKind."""
    for kind, matches in CONNECTION_ERROR_RULES:
        if matches(exc):
            return kind
    return FailureKind.OTHER_CONNECTION_ERROR


def _to_ascii(hostname: str) -> str:
    try:
        return hostname.encode("idna").decode("ascii")
    except UnicodeError:
        return hostname


def _match_dns_name(pattern: str, hostname: str) -> bool:
    pattern = pattern.rstrip(".").lower()
    hostname = hostname.rstrip(".").lower()

    if pattern == hostname:
        return True

    # Only a whole left-most "*" label is honoured, matching exactly one label
    if pattern.startswith("*."):
        first, _, rest = hostname.partition(".")
        return bool(first) and bool(rest) and rest == pattern[2:]

    return False


def _san_names(cert: x509.Certificate) -> List[str]:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return []
    names = list(san.get_values_for_type(x509.DNSName))
    names.extend(str(ip) for ip in san.get_values_for_type(x509.IPAddress))
    return names


def certificate_matches_hostname(cert: x509.Certificate, hostname: str) -> bool:
    """
    Check that a certificate is valid for ``hostname``.

    Only subjectAltName entries are considered; the subject common name is
    ignored. IP literals are compared against IP address entries.
    """
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        return False

    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        address = None

    if address is not None:
        return address in san.get_values_for_type(x509.IPAddress)

    ascii_hostname = _to_ascii(hostname)
    return any(
        _match_dns_name(name, ascii_hostname) for name in san.get_values_for_type(x509.DNSName)
    )


def days_until(expiry: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days between ``now`` and ``expiry``, rounded down.

    Negative once ``expiry`` is in the past.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    hours = (expiry - now).total_seconds() / 3600
    return math.floor(hours / 24)


class CertificateProbe:
    """
    Probe a single TLS endpoint for its leaf certificate expiry.

    Each call performs one blocking connection attempt using the platform
    trust store, with no retry and no caching. The connection is closed on
    every return path.
    """

    def __init__(
        self,
        verbose: bool = False,
        context_factory: Optional[Callable[[], ssl.SSLContext]] = None,
    ):
        self.verbose = verbose
        self.context_factory = context_factory or ssl.create_default_context
        self.logger = get_logger("probe")

    def probe(self, target: TargetAddress) -> ProbeOutcome:
        """
        Probe ``target`` and return a ProbeSuccess or a ProbeFailure.

        Args:
            target: Normalized address to connect to

        Returns:
            The probe outcome
        """
        if self.verbose:
            log_probe_start(self.logger, str(target))

        try:
            sock = socket.create_connection((target.hostname, target.port))
        except (OSError, ValueError) as e:
            return self._connection_failure(target, e)

        with sock:
            try:
                tls = self.context_factory().wrap_socket(sock, server_hostname=target.hostname)
            except (OSError, ValueError) as e:
                return self._connection_failure(target, e)

            with tls:
                if self.verbose:
                    self._trace(f"Connected to {_format_peer(tls)}")
                return self._inspect(target, tls)

    def _inspect(self, target: TargetAddress, tls: ssl.SSLSocket) -> ProbeOutcome:
        der = tls.getpeercert(binary_form=True)
        if not der:
            return ProbeFailure(
                target,
                FailureKind.NO_CERTIFICATES_PRESENTED,
                "no certificates presented by the server",
            )

        cert = x509.load_der_x509_certificate(der)

        self._trace(f"Verifying hostname: {target.hostname}")
        if not certificate_matches_hostname(cert, target.hostname):
            names = _san_names(cert)
            if names:
                message = f"certificate is valid for {', '.join(names)}, not {target.hostname}"
            else:
                message = (
                    f"certificate has no subjectAltName entries, not valid for {target.hostname}"
                )
            return ProbeFailure(target, FailureKind.HOSTNAME_MISMATCH, message)

        self._trace("Reading certificate chain")
        expiry_date = cert.not_valid_after_utc
        return ProbeSuccess(target, expiry_date, days_until(expiry_date))

    def _connection_failure(self, target: TargetAddress, exc: BaseException) -> ProbeFailure:
        kind = classify_connection_error(exc)
        self._trace(f"Connection to {target} failed ({kind.value}): {exc}")
        return ProbeFailure(target, kind, str(exc))

    def _trace(self, message: str) -> None:
        if self.verbose:
            self.logger.debug(message)


def _format_peer(tls: ssl.SSLSocket) -> str:
    try:
        host, port = tls.getpeername()[:2]
    except OSError:
        return "unknown peer"
    return f"{host}:{port}"


def probe(target: Union[str, TargetAddress], verbose: bool = False) -> ProbeOutcome:
    """Normalize ``target`` if needed and probe it with the default trust store."""
    if isinstance(target, str):
        target = normalize(target)
    return CertificateProbe(verbose=verbose).probe(target)
