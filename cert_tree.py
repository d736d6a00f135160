"""Assemble decoded certificates into issuer/subject trees and check each link.

Certificates are linked purely by name: a certificate is the child of the
certificate whose subject string equals its issuer string. No signature is
verified, so a "valid chain" here only means that the names line up.
"""

from __future__ import annotations

import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from cert_models import (
    CertificateRecord,
    ChainForest,
    ChainNode,
    ValidationStatus,
    classify_validity,
)

__all__ = [
    "assemble_forest",
    "validate_certificate_chain",
    "build_certificate_tree",
]


def build_subject_map(certs: Iterable[CertificateRecord]) -> Dict[str, CertificateRecord]:
    """Map subjects to records; a later record with the same subject wins."""
    subject_map = {}
    for cert in certs:
        subject_map[cert.subject] = cert
    return subject_map


def build_issuer_map(certs: Iterable[CertificateRecord]) -> Dict[str, List[str]]:
    """Map each issuer to the subjects it issued, in input order."""
    issuer_map: Dict[str, List[str]] = {}
    for cert in certs:
        issuer_map.setdefault(cert.issuer, []).append(cert.subject)
    return issuer_map


def _build_node(
    cert: CertificateRecord,
    subject_map: Dict[str, CertificateRecord],
    issuer_map: Dict[str, List[str]],
    processed: Set[str],
    now: Optional[datetime.datetime],
) -> ChainNode:
    # Depth-first with an explicit stack. A subject is marked before its
    # children are looked at, which is what stops issuer cycles.
    processed.add(cert.subject)
    node = ChainNode(cert, classify_validity(cert.not_after, now))
    stack = [(node, iter(issuer_map.get(cert.subject, ())))]

    while stack:
        parent, pending = stack[-1]
        for subject in pending:
            if subject in processed:
                continue
            child_cert = subject_map[subject]
            processed.add(subject)
            child = ChainNode(child_cert, classify_validity(child_cert.not_after, now))
            parent.children.append(child)
            stack.append((child, iter(issuer_map.get(subject, ()))))
            break
        else:
            stack.pop()

    return node


def assemble_forest(
    certs: Sequence[CertificateRecord], now: Optional[datetime.datetime] = None
) -> ChainForest:
    """Group certificates into trees without validating the links.

    Roots are taken in two scans over the input. The first picks self-signed
    certificates and certificates whose issuer is not among the subjects.
    The second picks up whatever the first left unreached, e.g. certificates
    that name each other as issuer; the first of those in input order
    becomes the root of its group.

    Every node carries ``ValidationStatus.UNVALIDATED`` until
    validate_certificate_chain() runs.
    """
    subject_map = build_subject_map(certs)
    issuer_map = build_issuer_map(certs)

    forest = ChainForest()
    processed: Set[str] = set()

    for cert in certs:
        if cert.issuer not in subject_map or cert.is_self_signed:
            if cert.subject not in processed:
                forest.roots.append(_build_node(cert, subject_map, issuer_map, processed, now))

    for cert in certs:
        if cert.subject not in processed:
            forest.roots.append(_build_node(cert, subject_map, issuer_map, processed, now))

    return forest


def validate_certificate_chain(forest: ChainForest) -> ChainForest:
    """Set the validation status of every node in place.

    A root is valid only when it is self-signed. Any other node is valid when
    its parent's subject is exactly its issuer. A broken link higher up does
    not affect the nodes below it.
    """
    stack = [(root, None) for root in forest.roots]
    while stack:
        node, parent = stack.pop()
        if parent is None:
            linked = node.cert.is_self_signed
        else:
            linked = parent.cert.subject == node.cert.issuer
        node.validation_status = (
            ValidationStatus.VALID if linked else ValidationStatus.INVALID_CHAIN
        )
        stack.extend((child, node) for child in node.children)
    return forest


def build_certificate_tree(
    certs: Sequence[CertificateRecord], now: Optional[datetime.datetime] = None
) -> ChainForest:
    """Assemble and validate in one step."""
    return validate_certificate_chain(assemble_forest(certs, now=now))
