"""
TLS key/certificate provisioning.

Uses the user's files when they can be read and parsed, otherwise generates
a fresh self-signed pair for localhost. Generated material lives in memory
only.
"""

import ipaddress
import ssl
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from devserver.config import ServerConfig, TLSFiles

logger = structlog.get_logger(__name__)

COMMON_NAME = "localhost"
KEY_SIZE = 2048
VALIDITY_DAYS = 365


@dataclass(frozen=True)
class CertificatePair:
    """PEM encoded private key and certificate."""
    key: bytes
    cert: bytes

    def ssl_context(self) -> ssl.SSLContext:
        """Build a server-side SSL context from the in-memory pair."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        # load_cert_chain only accepts paths; the directory is removed right after loading
        with tempfile.TemporaryDirectory(prefix="devserver-tls-") as tmp:
            key_file = Path(tmp) / "key.pem"
            cert_file = Path(tmp) / "cert.pem"
            key_file.touch(mode=0o600)
            key_file.write_bytes(self.key)
            cert_file.write_bytes(self.cert)
            context.load_cert_chain(certfile=str(cert_file), keyfile=str(key_file))
        return context


def generate_self_signed(
    common_name: str = COMMON_NAME,
    key_size: int = KEY_SIZE,
    days: int = VALIDITY_DAYS,
) -> CertificatePair:
    """Generate a new RSA key and a self-signed SHA-256 certificate."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=days))
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName(common_name),
                x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
            ]),
            critical=False,
        )
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )

    return CertificatePair(
        key=key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ),
        cert=cert.public_bytes(serialization.Encoding.PEM),
    )


def load_pair(files: TLSFiles) -> CertificatePair:
    """
    Read a user supplied pair and make sure both parts parse.

    Raises OSError when a file cannot be read, ValueError or TypeError when
    the content is not an unencrypted PEM key / certificate.
    """
    key = Path(files.key_path).read_bytes()
    cert = Path(files.cert_path).read_bytes()

    serialization.load_pem_private_key(key, password=None)
    x509.load_pem_x509_certificate(cert)

    return CertificatePair(key=key, cert=cert)


def provision(config: ServerConfig) -> CertificatePair:
    """Return the pair to terminate TLS with."""
    files = config.tls_files
    if files is not None:
        try:
            return load_pair(files)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(
                "Failed to load custom certificate, using a self-signed one instead",
                key_path=files.key_path,
                cert_path=files.cert_path,
                error=str(e),
            )

    logger.debug("Generating self-signed certificate", common_name=COMMON_NAME)
    return generate_self_signed()
