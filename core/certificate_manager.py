# certificate_manager.py
import ssl
import logging
import ipaddress
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)


class CertificateManager:
    """Self-signed certificate for the relay HTTPS listener"""

    def __init__(self, certs_dir: Optional[Path] = None):
        if certs_dir is None:
            from core.config_manager import get_app_data_dir
            certs_dir = get_app_data_dir() / "certificates"
        certs_dir.mkdir(parents=True, exist_ok=True)

        self.cert_path = certs_dir / "relay.crt"
        self.key_path = certs_dir / "relay.key"

    def generate_self_signed_certificate(self) -> bool:
        """Generates a self-signed certificate for localhost"""
        try:
            private_key = rsa.generate_private_key(
                public_exponent=65537,
                key_size=2048,
            )

            subject = issuer = x509.Name([
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, "HTTP Relay"),
                x509.NameAttribute(NameOID.COMMON_NAME, "localhost"),
            ])

            now = datetime.now(timezone.utc)
            cert_builder = x509.CertificateBuilder().subject_name(
                subject
            ).issuer_name(
                issuer
            ).public_key(
                private_key.public_key()
            ).serial_number(
                x509.random_serial_number()
            ).not_valid_before(
                now
            ).not_valid_after(
                now + timedelta(days=365)
            )

            san = x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
            ])

            cert_builder = cert_builder.add_extension(san, critical=False)

            cert = cert_builder.sign(private_key, hashes.SHA256())

            with open(self.key_path, "wb") as key_file:
                key_file.write(private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.TraditionalOpenSSL,
                    encryption_algorithm=serialization.NoEncryption(),
                ))

            with open(self.cert_path, "wb") as cert_file:
                cert_file.write(cert.public_bytes(
                    encoding=serialization.Encoding.PEM
                ))

            logger.info(f"✅ Self-signed certificate created: {self.cert_path}")
            return True

        except (OSError, ValueError) as e:
            logger.error(f"❌ Certificate generation failed: {e}")
            return False

    def check_certificates_exist(self) -> bool:
        return self.cert_path.exists() and self.key_path.exists()

    def ensure_certificates_exist(self) -> bool:
        """Makes sure the certificates exist, creating them when needed"""
        if not self.check_certificates_exist():
            logger.warning("Certificates not found, generating new ones...")
            return self.generate_self_signed_certificate()
        return True

    def create_ssl_context(self) -> ssl.SSLContext:
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(certfile=str(self.cert_path), keyfile=str(self.key_path))
        return ssl_context

    def _load_certificate(self) -> x509.Certificate:
        with open(self.cert_path, "rb") as cert_file:
            return x509.load_pem_x509_certificate(cert_file.read())

    def get_certificate_info(self) -> dict:
        """Returns certificate information"""
        if not self.cert_path.exists():
            return {"error": "Certificate not found"}

        try:
            cert = self._load_certificate()
        except (OSError, ValueError) as e:
            return {"error": f"Failed to read certificate: {e}"}

        return {
            "subject": cert.subject.rfc4514_string(),
            "issuer": cert.issuer.rfc4514_string(),
            "not_valid_before_utc": cert.not_valid_before_utc.isoformat(),
            "not_valid_after_utc": cert.not_valid_after_utc.isoformat(),
            "serial_number": str(cert.serial_number),
        }

    def get_certificate_days_remaining(self) -> int:
        """Days until the certificate expires (-1 if it could not be read)"""
        if not self.cert_path.exists():
            return -1

        try:
            cert = self._load_certificate()
        except (OSError, ValueError) as e:
            logger.error(f"Certificate expiry check failed: {e}")
            return -1

        days_remaining = (cert.not_valid_after_utc - datetime.now(timezone.utc)).days
        return max(0, days_remaining)
