"""Tests for TLS provisioning."""

import ssl

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID
from structlog.testing import capture_logs

from devserver.config import ServerConfig, TLSFiles
from devserver.server.tls import CertificatePair, generate_self_signed, provision


class TestSelfSigned:
    """Test generated pairs."""

    def setup_method(self):
        self.pair = generate_self_signed()
        self.cert = x509.load_pem_x509_certificate(self.pair.cert)
        self.key = serialization.load_pem_private_key(self.pair.key, password=None)

    def test_parameters(self):
        cn = self.cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        assert cn == "localhost"
        assert self.cert.issuer == self.cert.subject
        assert self.key.key_size == 2048
        assert isinstance(self.cert.signature_hash_algorithm, hashes.SHA256)
        validity = self.cert.not_valid_after_utc - self.cert.not_valid_before_utc
        assert validity.days == 365

    def test_key_matches_certificate(self):
        assert self.cert.public_key().public_numbers() == self.key.public_key().public_numbers()

    def test_fresh_key_each_time(self):
        assert generate_self_signed().key != self.pair.key

    def test_ssl_context(self):
        assert isinstance(self.pair.ssl_context(), ssl.SSLContext)


class TestProvision:
    """Test choosing between user files and generation."""

    def test_user_files(self, tmp_path):
        pair = generate_self_signed()
        (tmp_path / "key.pem").write_bytes(pair.key)
        (tmp_path / "cert.pem").write_bytes(pair.cert)
        config = ServerConfig(
            tls=TLSFiles(key_path=str(tmp_path / "key.pem"), cert_path=str(tmp_path / "cert.pem")),
            live_reload_disabled=True,
        )

        assert provision(config) == pair

    def test_missing_files_fall_back_with_warning(self, tmp_path):
        config = ServerConfig(
            tls=TLSFiles(key_path=str(tmp_path / "nope.key"), cert_path=str(tmp_path / "nope.crt")),
        )

        with capture_logs() as logs:
            pair = provision(config)

        assert isinstance(pair, CertificatePair)
        x509.load_pem_x509_certificate(pair.cert)
        assert any(entry["log_level"] == "warning" for entry in logs)

    def test_malformed_files_fall_back(self, tmp_path):
        (tmp_path / "key.pem").write_text("not a key")
        (tmp_path / "cert.pem").write_text("not a cert")
        config = ServerConfig(
            tls=TLSFiles(key_path=str(tmp_path / "key.pem"), cert_path=str(tmp_path / "cert.pem")),
        )

        with capture_logs() as logs:
            pair = provision(config)

        assert pair.cert != b"not a cert"
        assert [entry["log_level"] for entry in logs].count("warning") == 1

    def test_boolean_generates(self):
        pair = provision(ServerConfig(tls=True))
        x509.load_pem_x509_certificate(pair.cert)
