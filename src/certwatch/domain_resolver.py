"""
Hostname validation and registrable domain resolution.

Resolves certificate subject common names to their registrable domain
(the label directly under a public suffix, e.g. ``example.co.uk`` from
``www.example.co.uk``) and validates operator-supplied watch-list entries.
"""

import ipaddress
import re
from typing import Optional

import idna
import tldextract

from .enums import DomainParseErrorCode
from .exceptions import DomainParseError


MAX_HOSTNAME_LENGTH = 253
MAX_LABEL_LENGTH = 63

# RFC 1123 label: alphanumerics and inner hyphens
LABEL_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")


def _fail(code: DomainParseErrorCode, message: str, raw: str, **details) -> DomainParseError:
    return DomainParseError(
        code=code.value,
        message=message,
        details={"raw_input": raw, **details},
    )


class DomainResolver:
    """
    Resolves hostnames to registrable domains using the Public Suffix List.

    The suffix list comes from the snapshot bundled with tldextract, so
    resolution never touches the network and is deterministic for the
    lifetime of an installation.
    """

    def __init__(self, extractor: Optional[tldextract.TLDExtract] = None) -> None:
        """
        Initialize the resolver.

        Args:
            extractor: Optional preconfigured TLDExtract instance
        """
        self._extract = extractor or tldextract.TLDExtract(
            cache_dir=None,
            suffix_list_urls=(),
        )

    def resolve(self, common_name: str) -> str:
        """
        Resolve a certificate common name to its registrable domain.

        Args:
            common_name: Subject CN, e.g. 'www.example.com'

        Returns:
            The registrable domain, e.g. 'example.com'

        Raises:
            DomainParseError: If the name is not a valid hostname or has
                no registrable part under a public suffix
        """
        host = self.canonical_host(common_name)
        return self._registrable(host, common_name)

    def validate(self, raw_domain: str) -> str:
        """
        Validate a domain for the watch-list and return its canonical form.

        Only registrable domains are accepted, since membership checks
        compare against the resolved registrable domain of each entry.

        Raises:
            DomainParseError: If the domain is invalid or is a subdomain
        """
        host = self.canonical_host(raw_domain)
        registrable = self._registrable(host, raw_domain)
        if registrable != host:
            raise _fail(
                DomainParseErrorCode.NOT_REGISTRABLE,
                f"'{host}' is not a registrable domain, use '{registrable}'",
                raw_domain,
                registrable_domain=registrable,
            )
        return host

    def canonical_host(self, raw: str) -> str:
        """
        Normalize a hostname to lowercase ASCII and check its syntax.

        Raises:
            DomainParseError: If the hostname is syntactically invalid
        """
        if raw is None or not raw.strip():
            raise _fail(DomainParseErrorCode.EMPTY_INPUT, "Hostname is empty", raw or "")

        host = raw.strip().lower()
        if host.endswith("."):
            host = host[:-1]

        if "*" in host:
            raise _fail(DomainParseErrorCode.WILDCARD, "Hostname contains a wildcard", raw)

        if any(ord(c) > 127 for c in host):
            try:
                host = idna.encode(host, uts46=True).decode("ascii")
            except idna.IDNAError as e:
                raise _fail(
                    DomainParseErrorCode.IDNA_ERROR,
                    f"IDNA encoding failed: {e}",
                    raw,
                    idna_error=str(e),
                )

        if not host or len(host) > MAX_HOSTNAME_LENGTH:
            raise _fail(
                DomainParseErrorCode.INVALID_LENGTH,
                f"Hostname length must be between 1 and {MAX_HOSTNAME_LENGTH}",
                raw,
                length=len(host),
            )

        try:
            ipaddress.ip_address(host)
        except ValueError:
            pass
        else:
            raise _fail(DomainParseErrorCode.IP_ADDRESS, "Hostname is an IP address", raw)

        for label in host.split("."):
            if len(label) > MAX_LABEL_LENGTH:
                raise _fail(
                    DomainParseErrorCode.INVALID_LENGTH,
                    f"Label exceeds {MAX_LABEL_LENGTH} characters",
                    raw,
                    label=label,
                )
            if not LABEL_PATTERN.match(label):
                raise _fail(
                    DomainParseErrorCode.FORBIDDEN_CHARS,
                    "Hostname contains an invalid label",
                    raw,
                    label=label,
                )
            if label.startswith("xn--"):
                try:
                    idna.decode(label)
                except (idna.IDNAError, UnicodeError) as e:
                    raise _fail(
                        DomainParseErrorCode.IDNA_ERROR,
                        f"Malformed punycode label: {e}",
                        raw,
                        label=label,
                    )

        return host

    def _registrable(self, host: str, raw: str) -> str:
        result = self._extract(host)
        if not result.domain or not result.suffix:
            raise _fail(
                DomainParseErrorCode.NO_REGISTRABLE_DOMAIN,
                "Hostname has no registrable domain under a public suffix",
                raw,
                host=host,
            )
        return f"{result.domain}.{result.suffix}"
