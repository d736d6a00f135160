"""Utility functions for loading and decoding X.509 certificates.

Turns PEM bundles, DER blobs, local files and remote hosts into ordered
lists of CertificateRecord values for the chain builder in cert_tree.
"""

from __future__ import annotations

import re
import select
import socket
import time
import warnings
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

import requests
import urllib3
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, rsa
from OpenSSL import SSL

from cert_models import DATE_FORMAT, CertificateRecord, ExtensionInfo

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
warnings.filterwarnings("ignore", message="Attribute's length must be >= 1 and <= 64, but it was")

__all__ = [
    "CertError",
    "CertFormatError",
    "CertNotFoundError",
    "CertFetchError",
    "load_certificate",
    "split_pem_certificates",
    "parse_certificate_chain",
    "extract_cert_info",
    "extract_cn",
    "oid_to_name",
    "signature_alg_to_name",
    "load_certificate_from_file",
    "download",
    "fetch_certificate_chain_via_tls",
    "fetch_certificate_chain_from_url",
]

TIMEOUT = 10
HTTPS_PORT = 443

PEM_CERT_RE = re.compile(
    rb"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----", re.DOTALL
)

EXTENSION_NAMES = {
    # Standard X.509 extensions
    "2.5.29.14": "Subject Key Identifier",
    "2.5.29.15": "Key Usage",
    "2.5.29.16": "Private Key Usage Period",
    "2.5.29.17": "Subject Alternative Name",
    "2.5.29.18": "Issuer Alternative Name",
    "2.5.29.19": "Basic Constraints",
    "2.5.29.30": "Name Constraints",
    "2.5.29.31": "CRL Distribution Points",
    "2.5.29.32": "Certificate Policies",
    "2.5.29.33": "Policy Mappings",
    "2.5.29.35": "Authority Key Identifier",
    "2.5.29.36": "Policy Constraints",
    "2.5.29.37": "Extended Key Usage",
    "2.5.29.46": "Freshest CRL",
    # Vendor extensions
    "1.3.6.1.4.1.311.20.2": "Microsoft Smart Card Login",
    "1.3.6.1.4.1.311.21.1": "Microsoft Individual Code Signing",
    "1.2.840.113533.7.65.0": "Entrust Version Information",
    "2.16.840.1.113730.1.1": "Netscape Certificate Type",
    "2.23.42.7.0": "VeriSign Individual SHA1 Hash",
    # PKIX
    "1.3.6.1.5.5.7.1.1": "Authority Information Access",
    "1.3.6.1.5.5.7.1.3": "QC Statements",
    "1.3.6.1.4.1.11129.2.4.2": "Signed Certificate Timestamp",
}

SIGNATURE_ALGORITHM_NAMES = {
    "1.2.840.113549.1.1.4": "MD5 with RSA",
    "1.2.840.113549.1.1.5": "SHA1 with RSA",
    "1.2.840.113549.1.1.10": "RSASSA-PSS",
    "1.2.840.113549.1.1.11": "SHA256 with RSA",
    "1.2.840.113549.1.1.12": "SHA384 with RSA",
    "1.2.840.113549.1.1.13": "SHA512 with RSA",
    "1.3.14.3.2.29": "SHA1 with RSA",
    "1.2.840.10045.4.1": "SHA1 with ECDSA",
    "1.2.840.10045.4.3.2": "SHA256 with ECDSA",
    "1.2.840.10045.4.3.3": "SHA384 with ECDSA",
    "1.2.840.10045.4.3.4": "SHA512 with ECDSA",
    "1.2.840.10040.4.3": "SHA1 with DSA",
    "1.3.101.112": "Ed25519",
    "1.3.101.113": "Ed448",
}

KEY_USAGE_LABELS = [
    ("digital_signature", "Digital Signature"),
    ("content_commitment", "Non Repudiation"),
    ("key_encipherment", "Key Encipherment"),
    ("data_encipherment", "Data Encipherment"),
    ("key_agreement", "Key Agreement"),
    ("key_cert_sign", "Certificate Sign"),
    ("crl_sign", "CRL Sign"),
]


class CertError(Exception):
    """Base class for certificate loading errors."""


class CertFormatError(CertError, ValueError):
    """Input could not be decoded as a certificate (or as a usable URL)."""


class CertNotFoundError(CertError, FileNotFoundError):
    """Certificate file does not exist."""


class CertFetchError(CertError, OSError):
    """Transport failure while retrieving certificates from a remote host."""


def load_certificate(cert_bytes: bytes) -> x509.Certificate:
    """Load a certificate from PEM or DER bytes.

    Tries PEM first, then DER.

    Parameters
    ----------
    cert_bytes : bytes
        Certificate in PEM or DER format.

    Returns
    -------
    x509.Certificate
        Parsed certificate object.

    Raises
    ------
    CertFormatError
        If the bytes cannot be parsed as PEM or DER.
    """
    try:
        return x509.load_pem_x509_certificate(cert_bytes)
    except (ValueError, x509.InvalidVersion):
        try:
            return x509.load_der_x509_certificate(cert_bytes)
        except (ValueError, x509.InvalidVersion) as e:
            raise CertFormatError("Failed to parse certificate as PEM or DER") from e


def split_pem_certificates(data: bytes) -> List[bytes]:
    """Return every CERTIFICATE block of a PEM bundle, in file order."""
    return PEM_CERT_RE.findall(data)


def oid_to_name(oid: str) -> Optional[str]:
    return EXTENSION_NAMES.get(oid)


def signature_alg_to_name(oid: str) -> Optional[str]:
    return SIGNATURE_ALGORITHM_NAMES.get(oid)


def extract_cn(dn: str) -> str:
    """Return the first ``CN=`` value of a DN string, or the whole DN if it has none.

    The attribute name is matched exactly, as rfc4514_string() writes it.
    """
    for part in re.split(r"(?<!\\),", dn):
        part = part.strip()
        if part.startswith("CN="):
            return re.sub(r"\\(.)", r"\1", part[3:])
    return dn


def _format_serial(serial: int) -> str:
    digits = f"{serial:x}"
    if len(digits) % 2:
        digits = "0" + digits
    return " ".join(digits[i:i + 2] for i in range(0, len(digits), 2))


def _format_validity(cert: x509.Certificate):
    not_before, not_after = cert.not_valid_before_utc, cert.not_valid_after_utc
    return not_before.strftime(DATE_FORMAT), not_after.strftime(DATE_FORMAT)


def _describe_public_key(cert: x509.Certificate) -> str:
    try:
        key = cert.public_key()
    except Exception:
        # unsupported key types raise from deep inside the backend
        return "Unknown"
    if isinstance(key, rsa.RSAPublicKey):
        return f"RSA ({key.key_size} bits)"
    if isinstance(key, ec.EllipticCurvePublicKey):
        return "ECDSA"
    if isinstance(key, dsa.DSAPublicKey):
        return "DSA"
    if isinstance(key, ed25519.Ed25519PublicKey):
        return "Ed25519"
    if isinstance(key, ed448.Ed448PublicKey):
        return "Ed448"
    return "Unknown"


def _describe_signature_algorithm(cert: x509.Certificate) -> str:
    oid = cert.signature_algorithm_oid
    name = signature_alg_to_name(oid.dotted_string)
    if name:
        return name
    library_name = getattr(oid, "_name", None)
    if library_name and library_name != "Unknown OID":
        return library_name
    return oid.dotted_string


def _describe_key_usage(ku: x509.KeyUsage) -> str:
    usages = [label for attr, label in KEY_USAGE_LABELS if getattr(ku, attr)]
    if ku.key_agreement:
        if ku.encipher_only:
            usages.append("Encipher Only")
        if ku.decipher_only:
            usages.append("Decipher Only")
    return ", ".join(usages)


def _describe_general_name(name) -> str:
    if isinstance(name, x509.DNSName):
        return f"DNS:{name.value}"
    if isinstance(name, x509.IPAddress):
        return f"IP:{name.value}"
    if isinstance(name, x509.RFC822Name):
        return f"email:{name.value}"
    if isinstance(name, x509.UniformResourceIdentifier):
        return f"URI:{name.value}"
    if isinstance(name, x509.DirectoryName):
        return f"DirName:{name.value.rfc4514_string()}"
    if isinstance(name, x509.OtherName):
        return f"othername:{name.type_id.dotted_string}"
    return str(name.value)


def extract_cert_info(cert: x509.Certificate) -> CertificateRecord:
    """Flatten a parsed certificate into a CertificateRecord."""
    not_before, not_after = _format_validity(cert)

    extensions = []
    is_ca = False
    key_usage = None
    subject_alt_names = []
    try:
        cert_extensions = list(cert.extensions)
    except (ValueError, x509.DuplicateExtension, x509.UnsupportedGeneralNameType) as e:
        raise CertFormatError(f"Malformed certificate extensions: {e}") from e

    for ext in cert_extensions:
        oid = ext.oid.dotted_string
        extensions.append(ExtensionInfo(oid=oid, name=oid_to_name(oid), critical=ext.critical, value=str(ext.value)))
        if isinstance(ext.value, x509.BasicConstraints):
            is_ca = ext.value.ca
        elif isinstance(ext.value, x509.KeyUsage):
            key_usage = _describe_key_usage(ext.value)
        elif isinstance(ext.value, x509.SubjectAlternativeName):
            subject_alt_names = [_describe_general_name(n) for n in ext.value]

    return CertificateRecord(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=_format_serial(cert.serial_number),
        not_before=not_before,
        not_after=not_after,
        public_key_algorithm=_describe_public_key(cert),
        signature_algorithm=_describe_signature_algorithm(cert),
        version=cert.version.value + 1,
        extensions=tuple(extensions),
        is_ca=is_ca,
        key_usage=key_usage,
        subject_alt_names=tuple(subject_alt_names),
    )


def parse_certificate_chain(data: bytes) -> List[CertificateRecord]:
    """Decode every certificate in a PEM bundle, or a single DER certificate.

    Raises
    ------
    CertFormatError
        If a PEM block is corrupt, or the input holds no PEM certificate and
        is not DER either.
    """
    blocks = split_pem_certificates(data)
    if not blocks:
        return [extract_cert_info(load_certificate(data))]
    return [extract_cert_info(load_certificate(block)) for block in blocks]


def load_certificate_from_file(path: str) -> bytes:
    file_path = Path(path)
    if not file_path.is_file():
        raise CertNotFoundError(f"Certificate file not found: {path}")
    try:
        return file_path.read_bytes()
    except OSError as e:
        raise CertError(f"Failed to read {path}: {e}") from e


def download(url: str, *, timeout: int = TIMEOUT, verify: bool = False) -> Optional[bytes]:
    """Download content via HTTP.

    Parameters
    ----------
    url : str
        URL to download.
    timeout : int, optional
        Request timeout in seconds (default: TIMEOUT).
    verify : bool, optional
        Enable SSL certificate verification (default: False).

    Returns
    -------
    bytes or None
        Response body, or None if the URL is not HTTP(S) or the request fails.
    """
    if not isinstance(url, str):
        return None
    url = url.strip()
    if not url.lower().startswith(("http://", "https://")):
        return None

    try:
        r = requests.get(url, timeout=timeout, verify=verify)
        r.raise_for_status()
        return r.content
    except requests.RequestException:
        return None


def _do_handshake(conn: SSL.Connection, sock: socket.socket, deadline: float) -> None:
    # The socket stays non-blocking; wait on it for whatever OpenSSL asks for.
    while True:
        try:
            conn.do_handshake()
            return
        except SSL.WantReadError:
            readable, writable = [sock], []
        except SSL.WantWriteError:
            readable, writable = [], [sock]
        remaining = deadline - time.monotonic()
        if remaining <= 0 or not any(select.select(readable, writable, [], remaining)):
            raise CertFetchError(f"TLS handshake timed out after {TIMEOUT} seconds")


def fetch_certificate_chain_via_tls(hostname: str, port: int = HTTPS_PORT) -> List[CertificateRecord]:
    """Complete a TLS handshake with ``hostname`` and decode the chain it presents.

    The peer is not verified: broken and self-signed chains are exactly what
    this is used to look at.
    """
    context = SSL.Context(SSL.TLS_METHOD)
    context.set_verify(SSL.VERIFY_NONE, lambda *args: True)

    try:
        sock = socket.create_connection((hostname, port), timeout=TIMEOUT)
    except OSError as e:
        raise CertFetchError(f"Could not connect to {hostname}:{port}: {e}") from e

    sock.setblocking(False)
    try:
        conn = SSL.Connection(context, sock)
        conn.set_tlsext_host_name(hostname.encode("idna"))
        conn.set_connect_state()
        _do_handshake(conn, sock, time.monotonic() + TIMEOUT)
        peer_chain = conn.get_peer_cert_chain() or []
    except CertFetchError:
        raise
    except (SSL.Error, OSError) as e:
        raise CertFetchError(f"TLS handshake with {hostname}:{port} failed: {e}") from e
    finally:
        sock.close()

    if not peer_chain:
        raise CertFetchError(f"No certificates presented by {hostname}:{port}")
    return [extract_cert_info(cert.to_cryptography()) for cert in peer_chain]


def fetch_certificate_chain_from_url(url: str) -> List[CertificateRecord]:
    """Fetch certificates for a URL.

    URLs that serve a PEM bundle directly (e.g. a cacert.pem download) are
    decoded as such; anything else falls back to the chain the server
    presents during the TLS handshake.
    """
    parsed = urlparse(url)
    hostname = parsed.hostname
    if not hostname:
        raise CertFormatError(f"Not a usable URL: {url}")

    content = download(url)
    if content and b"-----BEGIN CERTIFICATE-----" in content:
        return parse_certificate_chain(content)

    try:
        port = parsed.port or HTTPS_PORT
    except ValueError as e:
        raise CertFormatError(f"Invalid port in URL: {url}") from e
    return fetch_certificate_chain_via_tls(hostname, port)
