"""
Property-based tests for the Domain Resolver module.

Resolution uses the Public Suffix List snapshot bundled with tldextract,
so these tests run offline.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from certwatch.domain_resolver import MAX_LABEL_LENGTH, DomainResolver
from certwatch.enums import DomainParseErrorCode
from certwatch.exceptions import DomainParseError


RESOLVER = DomainResolver()
# Load the bundled suffix list once, outside any timed example
RESOLVER.resolve("example.com")

SUFFIXES = ["com", "net", "org", "de", "co.uk", "com.au"]


@st.composite
def label_strategy(draw) -> str:
    """Generate valid LDH labels."""
    first = draw(st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"))
    rest = draw(
        st.text(
            alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789-"),
            max_size=20,
        )
    )
    label = (first + rest).rstrip("-")
    return label if not label.startswith("xn--") else "x" + label[4:] or "x"


@st.composite
def hostname_strategy(draw) -> tuple[str, str]:
    """Generate (hostname, expected registrable domain) pairs."""
    registrable = f"{draw(label_strategy())}.{draw(st.sampled_from(SUFFIXES))}"
    subdomains = draw(st.lists(label_strategy(), max_size=3))
    hostname = ".".join(subdomains + [registrable])
    return hostname, registrable


class TestRegistrableResolution:
    """Tests for DomainResolver.resolve."""

    @pytest.mark.parametrize(
        "common_name,expected",
        [
            ("www.example.com", "example.com"),
            ("example.com", "example.com"),
            ("a.b.c.example.com", "example.com"),
            ("WWW.Example.COM", "example.com"),
            ("example.com.", "example.com"),
            ("shop.example.co.uk", "example.co.uk"),
            ("mail.example.com.au", "example.com.au"),
        ],
    )
    def test_resolves_known_names(self, common_name: str, expected: str) -> None:
        assert RESOLVER.resolve(common_name) == expected

    def test_resolves_internationalized_name_to_punycode(self) -> None:
        assert RESOLVER.resolve("www.bücher.de") == "xn--bcher-kva.de"

    @given(pair=hostname_strategy())
    @settings(max_examples=100)
    def test_resolution_strips_subdomains(self, pair: tuple[str, str]) -> None:
        """
        *For any* hostname under a known public suffix, resolution SHALL
        return the label directly under the suffix plus the suffix.
        """
        hostname, registrable = pair
        assert RESOLVER.resolve(hostname) == registrable

    @given(pair=hostname_strategy())
    @settings(max_examples=100)
    def test_resolution_is_idempotent(self, pair: tuple[str, str]) -> None:
        """
        *For any* hostname, resolving the resolved domain SHALL give the same domain.
        """
        hostname, _ = pair
        once = RESOLVER.resolve(hostname)
        assert RESOLVER.resolve(once) == once

    @given(pair=hostname_strategy())
    @settings(max_examples=20, deadline=None)
    def test_resolution_is_deterministic(self, pair: tuple[str, str]) -> None:
        hostname, _ = pair
        assert RESOLVER.resolve(hostname) == DomainResolver().resolve(hostname)

    @pytest.mark.parametrize(
        "common_name,code",
        [
            ("", DomainParseErrorCode.EMPTY_INPUT),
            ("   ", DomainParseErrorCode.EMPTY_INPUT),
            ("*.example.com", DomainParseErrorCode.WILDCARD),
            ("192.0.2.10", DomainParseErrorCode.IP_ADDRESS),
            ("2001:db8::1", DomainParseErrorCode.IP_ADDRESS),
            ("exa mple.com", DomainParseErrorCode.FORBIDDEN_CHARS),
            ("-example.com", DomainParseErrorCode.FORBIDDEN_CHARS),
            ("example..com", DomainParseErrorCode.FORBIDDEN_CHARS),
            ("Fake Org Root CA", DomainParseErrorCode.FORBIDDEN_CHARS),
            ("com", DomainParseErrorCode.NO_REGISTRABLE_DOMAIN),
            ("co.uk", DomainParseErrorCode.NO_REGISTRABLE_DOMAIN),
            ("localhost", DomainParseErrorCode.NO_REGISTRABLE_DOMAIN),
            ("printer.internal-lan", DomainParseErrorCode.NO_REGISTRABLE_DOMAIN),
        ],
    )
    def test_unresolvable_names_raise(self, common_name: str, code: DomainParseErrorCode) -> None:
        with pytest.raises(DomainParseError) as exc_info:
            RESOLVER.resolve(common_name)
        assert exc_info.value.code == code.value
        assert exc_info.value.raw_input == common_name

    def test_overlong_label_raises(self) -> None:
        with pytest.raises(DomainParseError) as exc_info:
            RESOLVER.resolve("a" * (MAX_LABEL_LENGTH + 1) + ".com")
        assert exc_info.value.code == DomainParseErrorCode.INVALID_LENGTH.value

    def test_overlong_hostname_raises(self) -> None:
        hostname = ".".join(["abcdefghij"] * 25) + ".com"
        with pytest.raises(DomainParseError) as exc_info:
            RESOLVER.resolve(hostname)
        assert exc_info.value.code == DomainParseErrorCode.INVALID_LENGTH.value


class TestWatchListValidation:
    """Tests for DomainResolver.validate."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("example.com", "example.com"),
            ("  Example.COM.  ", "example.com"),
            ("example.co.uk", "example.co.uk"),
            ("bücher.de", "xn--bcher-kva.de"),
        ],
    )
    def test_accepts_registrable_domains(self, raw: str, expected: str) -> None:
        assert RESOLVER.validate(raw) == expected

    def test_rejects_subdomain_with_suggestion(self) -> None:
        with pytest.raises(DomainParseError) as exc_info:
            RESOLVER.validate("www.example.com")
        assert exc_info.value.code == DomainParseErrorCode.NOT_REGISTRABLE.value
        assert exc_info.value.suggestion == "example.com"

    @given(pair=hostname_strategy())
    @settings(max_examples=100)
    def test_validated_domain_resolves_to_itself(self, pair: tuple[str, str]) -> None:
        """
        *For any* accepted watch-list domain, resolving it SHALL give it back,
        so membership checks compare like with like.
        """
        _, registrable = pair
        validated = RESOLVER.validate(registrable)
        assert RESOLVER.resolve(validated) == validated
