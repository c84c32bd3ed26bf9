"""
webcert-check

Checks the TLS certificate of a web endpoint and reports the number of days
until it expires, once or continuously as a Prometheus exporter.
"""

__version__ = "1.0.0"
__author__ = "webcert-check developers"
__description__ = "TLS certificate expiry checker and Prometheus exporter"

from webcert_check.address import TargetAddress, normalize
from webcert_check.config import Config
from webcert_check.metrics import MetricsCollector
from webcert_check.probe import (
    CertificateProbe,
    FailureKind,
    ProbeFailure,
    ProbeOutcome,
    ProbeSuccess,
    probe,
)

__all__ = [
    "CertificateProbe",
    "Config",
    "FailureKind",
    "MetricsCollector",
    "ProbeFailure",
    "ProbeOutcome",
    "ProbeSuccess",
    "TargetAddress",
    "normalize",
    "probe",
]
