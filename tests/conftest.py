import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from cert_models import CertificateRecord

NOW = datetime.datetime(2024, 6, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


def make_record(subject, issuer, not_after="2099-01-01 00:00:00"):
    return CertificateRecord(
        subject=subject,
        issuer=issuer,
        serial_number="01",
        not_before="2020-01-01 00:00:00",
        not_after=not_after,
        public_key_algorithm="ECDSA",
        signature_algorithm="SHA256 with ECDSA",
        version=3,
    )


@pytest.fixture
def record():
    return make_record


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def make_cert(ec_key):
    """Build a certificate named ``cn`` issued by ``issuer_cn``."""

    def _make_cert(cn, issuer_cn=None, ca=False, key=None, days=365, san=None):
        key = key or ec_key
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
        issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn or cn)])
        now = datetime.datetime.now(datetime.timezone.utc)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(key.public_key())
            .serial_number(0x0ABCDE)
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=days))
            .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=not ca,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=ca,
                    crl_sign=ca,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
        )
        if san:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(name) for name in san]),
                critical=False,
            )
        return builder.sign(ec_key, hashes.SHA256())

    return _make_cert


def to_pem(*certs):
    return b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in certs)


@pytest.fixture
def chain_pem(make_cert):
    root = make_cert("Test Root", ca=True)
    intermediate = make_cert("Test Intermediate", "Test Root", ca=True)
    leaf = make_cert("leaf.example.com", "Test Intermediate", san=["leaf.example.com", "www.example.com"])
    return to_pem(leaf, intermediate, root)


@pytest.fixture
def pem():
    return to_pem


@pytest.fixture
def duplicate_extension_der(ec_key):
    """DER certificate carrying two BasicConstraints extensions.

    The builder refuses duplicates, so a placeholder extension is added under
    an unused id-ce OID and its OID bytes are rewritten to 2.5.29.19 afterwards.
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "dup.example.com")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(ec_key.public_key())
        .serial_number(1)
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.UnrecognizedExtension(x509.ObjectIdentifier("2.5.29.99"), b"\x30\x00"),
            critical=False,
        )
        .sign(ec_key, hashes.SHA256())
    )
    der = cert.public_bytes(serialization.Encoding.DER)
    placeholder = b"\x06\x03\x55\x1d\x63"
    assert der.count(placeholder) == 1
    return der.replace(placeholder, b"\x06\x03\x55\x1d\x13")
