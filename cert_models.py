"""Data types shared by the decoder, the chain builder and the renderers.

Certificate records are plain values produced by cert_lib; chain nodes wrap
them with the two classifications computed by cert_tree.
"""

from __future__ import annotations

import datetime
import email.utils
import enum
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

__all__ = [
    "DATE_FORMAT",
    "EXPIRY_WARNING_DAYS",
    "ExtensionInfo",
    "CertificateRecord",
    "ValidityStatus",
    "ValidationStatus",
    "ChainNode",
    "ChainForest",
    "classify_validity",
]

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
EXPIRY_WARNING_DAYS = 30


@dataclass(frozen=True)
class ExtensionInfo:
    oid: str
    name: Optional[str]
    critical: bool
    value: str


@dataclass(frozen=True)
class CertificateRecord:
    """Decoded certificate fields.

    ``subject`` is the identity key used when linking certificates into
    chains. Dates are UTC text in ``DATE_FORMAT``.
    """

    subject: str
    issuer: str
    serial_number: str
    not_before: str
    not_after: str
    public_key_algorithm: str
    signature_algorithm: str
    version: int
    extensions: Tuple[ExtensionInfo, ...] = ()
    is_ca: bool = False
    key_usage: Optional[str] = None
    subject_alt_names: Tuple[str, ...] = ()

    @property
    def is_self_signed(self) -> bool:
        return self.subject == self.issuer


class ValidityStatus(enum.Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


class ValidationStatus(enum.Enum):
    UNVALIDATED = "unvalidated"
    VALID = "valid"
    INVALID_CHAIN = "invalid_chain"


def _parse_not_after(text: str) -> Optional[datetime.datetime]:
    try:
        parsed = datetime.datetime.strptime(text, DATE_FORMAT)
        return parsed.replace(tzinfo=datetime.timezone.utc)
    except (TypeError, ValueError):
        pass
    try:
        parsed = email.utils.parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def classify_validity(
    not_after: str, now: Optional[datetime.datetime] = None
) -> ValidityStatus:
    """Classify a certificate's expiry relative to ``now``.

    Parameters
    ----------
    not_after : str
        Expiry timestamp, ``DATE_FORMAT`` (UTC) or RFC 2822.
    now : datetime.datetime, optional
        Reference time (default: current UTC time). Naive values are taken
        as UTC.

    Returns
    -------
    ValidityStatus
        EXPIRED when the timestamp is already past, EXPIRING_SOON when at
        most ``EXPIRY_WARNING_DAYS`` whole days remain, VALID otherwise.
        Text that cannot be parsed is reported as VALID.
    """
    expiry = _parse_not_after(not_after)
    if expiry is None:
        return ValidityStatus.VALID

    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=datetime.timezone.utc)

    if expiry < now:
        return ValidityStatus.EXPIRED
    if (expiry - now).days <= EXPIRY_WARNING_DAYS:
        return ValidityStatus.EXPIRING_SOON
    return ValidityStatus.VALID


@dataclass(eq=False)
class ChainNode:
    cert: CertificateRecord
    validity_status: ValidityStatus
    children: List["ChainNode"] = field(default_factory=list)
    validation_status: ValidationStatus = ValidationStatus.UNVALIDATED

    @property
    def subject(self) -> str:
        return self.cert.subject

    def shape(self) -> tuple:
        """Nested (subject, validity, validation, children) tuples, for comparing trees."""
        return (
            self.cert.subject,
            self.validity_status,
            self.validation_status,
            tuple(child.shape() for child in self.children),
        )


@dataclass(eq=False)
class ChainForest:
    roots: List[ChainNode] = field(default_factory=list)

    def walk(self) -> Iterator[Tuple[int, ChainNode]]:
        """Yield ``(depth, node)`` pairs in depth-first pre-order."""
        stack = [(0, root) for root in reversed(self.roots)]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            stack.extend((depth + 1, child) for child in reversed(node.children))

    def shape(self) -> tuple:
        return tuple(root.shape() for root in self.roots)

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())
