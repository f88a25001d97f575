"""Local TLS gateway fixtures.

Certificates come from a throwaway CA generated per test, so the
transport's subject check runs against real `requests`/urllib3
connections without touching the network.
"""

from __future__ import annotations

import datetime
import ipaddress
import ssl
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

GATEWAY_HOST = "127.0.0.1"


def _new_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _key_usage(*, ca: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=not ca,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=ca,
        crl_sign=ca,
        encipher_only=False,
        decipher_only=False,
    )


def _subject(organization: str, common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, "California"),
            x509.NameAttribute(NameOID.LOCALITY_NAME, "Mountain View"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, "SBG"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def _write_pair(directory, stem: str, cert: x509.Certificate, key) -> tuple[str, str]:
    cert_path = directory / f"{stem}.crt"
    key_path = directory / f"{stem}.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        )
    )
    return str(cert_path), str(key_path)


class _CertificateAuthority:
    def __init__(self, directory) -> None:
        self._dir = directory
        self._key = _new_key()
        self._name = x509.Name(
            [x509.NameAttribute(NameOID.COMMON_NAME, "QBOE Test Root CA")]
        )
        now = datetime.datetime.now(datetime.timezone.utc)
        self._cert = (
            x509.CertificateBuilder()
            .subject_name(self._name)
            .issuer_name(self._name)
            .public_key(self._key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=1))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(_key_usage(ca=True), critical=True)
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(self._key.public_key()),
                critical=False,
            )
            .sign(self._key, hashes.SHA256())
        )
        self.ca_file = str(directory / "ca.pem")
        (directory / "ca.pem").write_bytes(
            self._cert.public_bytes(serialization.Encoding.PEM)
        )

    def issue(self, stem: str, subject: x509.Name) -> tuple[str, str]:
        key = _new_key()
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(self._name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=1))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(_key_usage(ca=False), critical=True)
            .add_extension(
                x509.ExtendedKeyUsage(
                    [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
                ),
                critical=False,
            )
            .add_extension(
                x509.SubjectAlternativeName(
                    [x509.IPAddress(ipaddress.ip_address(GATEWAY_HOST))]
                ),
                critical=False,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    self._key.public_key()
                ),
                critical=False,
            )
            .sign(self._key, hashes.SHA256())
        )
        return _write_pair(self._dir, stem, cert, key)


@pytest.fixture
def tls_material(tmp_path):
    ca = _CertificateAuthority(tmp_path)
    client_cert, client_key = ca.issue("client", _subject("QBOE Test", "myapp.example.com"))
    return SimpleNamespace(
        ca=ca,
        ca_file=ca.ca_file,
        client_cert=client_cert,
        client_key=client_key,
    )


class _GatewayHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_POST(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        self.server.bodies.append(self.rfile.read(length))

        body = b"<QBXML/>"
        self.send_response(200)
        self.send_header("Content-Type", "application/x-qbxml")
        self.send_header("Content-Length", str(len(body)))
        if self.server.close_after_response:
            self.send_header("Connection", "close")
            self.close_connection = True
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args) -> None:
        pass


@pytest.fixture
def tls_gateway(tls_material):
    """Start local HTTPS gateways presenting a chosen certificate subject."""
    servers: list[ThreadingHTTPServer] = []

    def start(organization: str = "Intuit", *, close_after_response: bool = False):
        cert_file, key_file = tls_material.ca.issue(
            f"server{len(servers)}", _subject(organization, GATEWAY_HOST)
        )
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(cert_file, key_file)

        server = ThreadingHTTPServer((GATEWAY_HOST, 0), _GatewayHandler)
        server.socket = context.wrap_socket(server.socket, server_side=True)
        server.bodies = []
        server.close_after_response = close_after_response
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)

        port = server.server_address[1]
        return SimpleNamespace(
            url=f"https://{GATEWAY_HOST}:{port}/j/AppGateway",
            bodies=server.bodies,
        )

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()
