"""Plain-text rendering of certificate trees and single certificates."""

from __future__ import annotations

from typing import List

from cert_lib import extract_cn
from cert_models import (
    CertificateRecord,
    ChainForest,
    ValidationStatus,
    ValidityStatus,
    classify_validity,
)

# Column at which the status/date part of a tree line starts.
DATE_COLUMN_START = 78

ROOT_PREFIX = "━ "

WHITE = "\x1b[37m"
RED = "\x1b[31m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
RESET = "\x1b[0m"

VALIDITY_LABELS = {
    ValidityStatus.VALID: ("VALID", GREEN),
    ValidityStatus.EXPIRING_SOON: ("EXPIRES SOON", YELLOW),
    ValidityStatus.EXPIRED: ("EXPIRED", RED),
}

VALIDATION_LABELS = {
    ValidationStatus.VALID: ("CHAIN OK", GREEN),
    ValidationStatus.INVALID_CHAIN: ("INVALID CHAIN", RED),
    ValidationStatus.UNVALIDATED: ("UNVALIDATED", YELLOW),
}


def _paint(text: str, color: str, use_color: bool) -> str:
    return f"{color}{text}{RESET}" if use_color else text


def node_prefix(depth: int) -> str:
    if depth == 0:
        return ROOT_PREFIX
    return " " * (5 + (depth - 1) * 4) + "└ "


def fit_name(name: str, prefix: str) -> str:
    """Truncate ``name`` so that it ends before the date column."""
    available = max(DATE_COLUMN_START - len(prefix) - 5, 0)
    if len(name) <= available:
        return name
    keep = available - 3 if available > 3 else available
    return name[:keep] + "..."


def format_tree_lines(forest: ChainForest, use_color: bool = True) -> List[str]:
    lines = []
    for seq, (depth, node) in enumerate(forest.walk(), 1):
        prefix = node_prefix(depth)
        name = fit_name(extract_cn(node.cert.subject), prefix)
        padding = " " * max(DATE_COLUMN_START - len(prefix) - len(name), 1)

        status, status_color = VALIDITY_LABELS[node.validity_status]
        chain, chain_color = VALIDATION_LABELS[node.validation_status]

        left = _paint(f"[{seq}] {prefix}{name}{padding}", WHITE, use_color)
        right = _paint(f"[{status}] [until: {node.cert.not_after}]", status_color, use_color)
        lines.append(f"{left}{right} {_paint(f'[{chain}]', chain_color, use_color)}")
    return lines


def display_certificate_tree_text(forest: ChainForest, use_color: bool = True) -> None:
    for line in format_tree_lines(forest, use_color=use_color):
        print(line)


def format_verbose(cert: CertificateRecord, use_color: bool = True) -> List[str]:
    status, color = VALIDITY_LABELS[classify_validity(cert.not_after)]
    lines = [
        "Certificate Information:",
        "======================",
        f"CN: {extract_cn(cert.subject)}",
        f"Subject: {cert.subject}",
        f"Issuer: {cert.issuer}",
        f"Serial Number: {cert.serial_number}",
        "Validity:",
        f"  Not Before: {cert.not_before}",
        f"  Not After: {cert.not_after}",
        f"  Status: {_paint(status, color, use_color)}",
        f"Public Key Algorithm: {cert.public_key_algorithm}",
        f"Signature Algorithm: {cert.signature_algorithm}",
        f"Version: {cert.version}",
        f"Is CA: {cert.is_ca}",
    ]

    if cert.key_usage:
        lines.append(f"Key Usage: {cert.key_usage}")

    if cert.subject_alt_names:
        lines.append("Subject Alternative Names:")
        lines.extend(f"  {san}" for san in cert.subject_alt_names)

    lines.append("Extensions:")
    for ext in cert.extensions:
        criticality = "critical" if ext.critical else "non-critical"
        lines.append(f"  {ext.name or ext.oid} ({criticality}) - {ext.value}")
    return lines


def display_verbose(cert: CertificateRecord, use_color: bool = True) -> None:
    for line in format_verbose(cert, use_color=use_color):
        print(line)
