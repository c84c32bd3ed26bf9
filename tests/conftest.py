"""
Shared fixtures: a throwaway certificate authority and local servers.
"""

import ipaddress
import socket
import ssl
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID


class IssuedCertificate:
    """A leaf certificate together with its private key."""

    def __init__(self, cert: x509.Certificate, key: rsa.RSAPrivateKey):
        self.cert = cert
        self.key = key

    @property
    def der(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.DER)

    def write(self, directory: Path, name: str) -> tuple:
        cert_file = directory / f"{name}.crt"
        key_file = directory / f"{name}.key"
        cert_file.write_bytes(self.cert.public_bytes(serialization.Encoding.PEM))
        key_file.write_bytes(
            self.key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        return cert_file, key_file


class CertificateAuthority:
    """Minimal CA used to issue server certificates for tests."""

    def __init__(self, common_name: str = "webcert-check Test CA"):
        self.key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        now = datetime.now(timezone.utc)

        self.cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=3650))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=False,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(self.key.public_key()), critical=False
            )
            .sign(self.key, hashes.SHA256())
        )

    @property
    def pem(self) -> str:
        return self.cert.public_bytes(serialization.Encoding.PEM).decode("ascii")

    def client_context(self, check_hostname: bool = True) -> ssl.SSLContext:
        """Client context that trusts this CA only."""
        context = ssl.create_default_context(cadata=self.pem)
        context.check_hostname = check_hostname
        return context

    def issue(
        self,
        dns_names: Sequence[str] = ("localhost",),
        ip_addresses: Sequence[str] = ("127.0.0.1",),
        not_after: Optional[datetime] = None,
    ) -> IssuedCertificate:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        now = datetime.now(timezone.utc)
        if not_after is None:
            not_after = now + timedelta(days=90)
        common_name = dns_names[0] if dns_names else "webcert-check test server"

        san: List[x509.GeneralName] = [x509.DNSName(name) for name in dns_names]
        san.extend(x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses)

        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
            .issuer_name(self.cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(min(now - timedelta(days=1), not_after - timedelta(days=1)))
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(self.key.public_key()),
                critical=False,
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        )
        if san:
            builder = builder.add_extension(x509.SubjectAlternativeName(san), critical=False)

        return IssuedCertificate(builder.sign(self.key, hashes.SHA256()), key)


class ServerThread(threading.Thread):
    """Loopback TCP server handing every accepted connection to ``handler``."""

    def __init__(self, handler: Callable[[socket.socket], None]):
        super().__init__(daemon=True)
        self.handler = handler
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(5)
        self.listener.settimeout(0.1)
        self.port = self.listener.getsockname()[1]
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                conn, _ = self.listener.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            conn.settimeout(5)
            with conn:
                try:
                    self.handler(conn)
                except OSError:
                    # Client aborted the handshake or hung up
                    pass

    def stop(self) -> None:
        self._stop_event.set()
        self.join(timeout=2)
        self.listener.close()


def _serve_plaintext(conn: socket.socket) -> None:
    conn.recv(4096)
    conn.sendall(b"HTTP/1.1 400 Bad Request\r\nContent-Length: 0\r\nConnection: close\r\n\r\n")
    # Half-close and drain so the client reads the response instead of a reset
    conn.shutdown(socket.SHUT_WR)
    while conn.recv(4096):
        pass


@pytest.fixture(scope="session")
def ca() -> CertificateAuthority:
    """Certificate authority that no platform trust store knows about."""
    return CertificateAuthority()


@pytest.fixture
def tls_server(tmp_path):
    """Factory starting a TLS server that presents the given certificate."""
    servers: List[ServerThread] = []

    def start(issued: IssuedCertificate) -> int:
        cert_file, key_file = issued.write(tmp_path, f"server-{len(servers)}")
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(str(cert_file), str(key_file))

        def handle(conn: socket.socket) -> None:
            with context.wrap_socket(conn, server_side=True) as tls:
                tls.recv(1)

        server = ServerThread(handle)
        server.start()
        servers.append(server)
        return server.port

    yield start

    for server in servers:
        server.stop()


@pytest.fixture
def plaintext_server():
    """Port of a server that answers in plain HTTP."""
    server = ServerThread(_serve_plaintext)
    server.start()
    yield server.port
    server.stop()


@pytest.fixture
def closed_port() -> int:
    """A loopback port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
