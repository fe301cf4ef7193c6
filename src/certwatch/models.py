"""
Data models for the certwatch system.

This module defines the certificate-transparency entry received from the
feed and the match produced when an entry hits the watch-list.
"""

from dataclasses import dataclass, field
from typing import Any

from .enums import MessageType


@dataclass
class Subject:
    """Subject fields of a leaf certificate."""

    c: str = ""  # Country
    cn: str = ""  # Common name
    aggregated: str = ""


@dataclass
class LeafCert:
    """The leaf certificate carried by a feed entry."""

    all_domains: list[str] = field(default_factory=list)
    subject: Subject = field(default_factory=Subject)
    extensions: dict[str, Any] = field(default_factory=dict)
    not_before: int = 0  # Epoch seconds
    not_after: int = 0  # Epoch seconds


@dataclass
class EntryData:
    """Payload of a certificate update frame."""

    cert_index: int = 0
    cert_link: str = ""
    leaf_cert: LeafCert = field(default_factory=LeafCert)
    seen: float = 0.0


@dataclass
class Entry:
    """One certificate-transparency log event."""

    message_type: str = MessageType.CERTIFICATE_UPDATE.value
    data: EntryData = field(default_factory=EntryData)
    domain: str = ""  # Registrable domain, filled in during matching

    @property
    def common_name(self) -> str:
        return self.data.leaf_cert.subject.cn

    @property
    def is_heartbeat(self) -> bool:
        return self.message_type == MessageType.HEARTBEAT.value


@dataclass(frozen=True)
class Match:
    """
    An entry whose domain is on the watch-list, paired with its serialized form.

    entry_string may be empty when serialization failed; the match is
    still recorded.
    """

    entry: Entry
    entry_string: str

    @property
    def domain(self) -> str:
        return self.entry.domain
