"""
Property-based tests for the feed wire format.

Uses Hypothesis to check that frames decode leniently (case-insensitive keys,
null as empty) and that serialization only fails on values JSON cannot carry.
"""

import json

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from certwatch.enums import MessageType
from certwatch.exceptions import FrameDecodeError, SerializationError
from certwatch.models import Entry, EntryData, LeafCert, Subject
from certwatch.wire import decode_frame, decode_stored, encode_entry, entry_to_dict


SAMPLE_FRAME = {
    "message_type": "certificate_update",
    "data": {
        "cert_index": 712345678,
        "cert_link": "https://ct.example.net/ct/v1/get-entries?start=712345678&end=712345678",
        "leaf_cert": {
            "all_domains": ["www.example.com", "example.com"],
            "subject": {
                "C": "US",
                "CN": "www.example.com",
                "aggregated": "/C=US/CN=www.example.com",
            },
            "extensions": {"subjectAltName": "DNS:www.example.com, DNS:example.com"},
            "not_before": 1700000000,
            "not_after": 1707776000,
        },
        "seen": 1700000123.25,
    },
}


@st.composite
def entry_strategy(draw) -> Entry:
    """Generate entries with JSON-representable values."""
    text = st.text(max_size=30)
    return Entry(
        message_type=draw(st.sampled_from([t.value for t in MessageType])),
        data=EntryData(
            cert_index=draw(st.integers(min_value=0, max_value=2**53)),
            cert_link=draw(text),
            leaf_cert=LeafCert(
                all_domains=draw(st.lists(text, max_size=5)),
                subject=Subject(c=draw(text), cn=draw(text), aggregated=draw(text)),
                extensions=draw(st.dictionaries(text, text, max_size=3)),
                not_before=draw(st.integers(min_value=0, max_value=2**40)),
                not_after=draw(st.integers(min_value=0, max_value=2**40)),
            ),
            seen=draw(st.floats(allow_nan=False, allow_infinity=False)),
        ),
        domain=draw(text),
    )


class TestFrameDecoding:
    """Tests for decode_frame."""

    def test_decodes_certificate_update(self) -> None:
        entry = decode_frame(json.dumps(SAMPLE_FRAME))

        assert entry.message_type == "certificate_update"
        assert not entry.is_heartbeat
        assert entry.data.cert_index == 712345678
        assert entry.common_name == "www.example.com"
        assert entry.data.leaf_cert.subject.c == "US"
        assert entry.data.leaf_cert.all_domains == ["www.example.com", "example.com"]
        assert entry.data.leaf_cert.not_after == 1707776000
        assert entry.data.seen == 1700000123.25
        assert entry.domain == ""

    def test_decodes_bytes_payload(self) -> None:
        entry = decode_frame(json.dumps(SAMPLE_FRAME).encode("utf-8"))
        assert entry.common_name == "www.example.com"

    def test_heartbeat_has_no_data(self) -> None:
        entry = decode_frame('{"message_type": "heartbeat", "timestamp": 1700000000.5}')

        assert entry.is_heartbeat
        assert entry.common_name == ""

    def test_null_values_decode_to_empty(self) -> None:
        frame = {
            "message_type": "certificate_update",
            "data": {"cert_index": None, "leaf_cert": {"subject": None, "all_domains": None}},
        }
        entry = decode_frame(json.dumps(frame))

        assert entry.data.cert_index == 0
        assert entry.common_name == ""
        assert entry.data.leaf_cert.all_domains == []

    def test_unknown_keys_are_ignored(self) -> None:
        frame = dict(SAMPLE_FRAME, extra={"anything": [1, 2, 3]})
        entry = decode_frame(json.dumps(frame))
        assert entry.data.cert_index == 712345678

    @pytest.mark.parametrize("raw", ["", "{", "not json", b"\xff\xfe"])
    def test_invalid_json_is_rejected(self, raw) -> None:
        with pytest.raises(FrameDecodeError) as exc_info:
            decode_frame(raw)
        assert exc_info.value.code == "invalid_json"
        assert exc_info.value.key is None

    @pytest.mark.parametrize("raw", ["[]", "42", '"text"', "null"])
    def test_non_object_is_rejected(self, raw: str) -> None:
        with pytest.raises(FrameDecodeError) as exc_info:
            decode_frame(raw)
        assert exc_info.value.code == "not_an_object"

    @pytest.mark.parametrize(
        "data",
        [
            {"cert_index": "12"},
            {"cert_index": 1.5},
            {"cert_index": True},
            {"leaf_cert": {"all_domains": "example.com"}},
            {"leaf_cert": {"all_domains": [1]}},
            {"leaf_cert": {"subject": {"CN": 7}}},
            {"leaf_cert": []},
        ],
    )
    def test_type_mismatch_is_rejected(self, data: dict) -> None:
        frame = {"message_type": "certificate_update", "data": data}
        with pytest.raises(FrameDecodeError) as exc_info:
            decode_frame(json.dumps(frame))
        assert exc_info.value.code == "type_mismatch"
        assert "path" in exc_info.value.details

    @given(
        key=st.sampled_from(["cn", "CN", "Cn", "cN"]),
        name=st.from_regex(r"[a-z]{1,10}\.[a-z]{2,5}", fullmatch=True),
    )
    @settings(max_examples=50)
    def test_keys_match_case_insensitively(self, key: str, name: str) -> None:
        """
        *For any* casing of a field name, the field SHALL decode to the same value.
        """
        frame = {
            "MESSAGE_TYPE": "certificate_update",
            "Data": {"Leaf_Cert": {"Subject": {key: name}}},
        }
        entry = decode_frame(json.dumps(frame))

        assert entry.message_type == "certificate_update"
        assert entry.common_name == name


class TestEntryEncoding:
    """Tests for encode_entry."""

    @given(entry=entry_strategy())
    @settings(max_examples=100)
    def test_encoded_entry_decodes_to_equal_entry(self, entry: Entry) -> None:
        """
        *For any* entry with JSON-representable values, decoding its
        serialized form SHALL give back an equal entry.
        """
        assert decode_frame(encode_entry(entry)) == entry

    def test_encoded_form_includes_resolved_domain(self) -> None:
        entry = decode_frame(json.dumps(SAMPLE_FRAME))
        entry.domain = "example.com"

        obj = json.loads(encode_entry(entry))

        assert obj["domain"] == "example.com"
        assert obj["data"]["leaf_cert"]["subject"]["cn"] == "www.example.com"

    @pytest.mark.parametrize("seen", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_numbers_fail_to_serialize(self, seen: float) -> None:
        entry = Entry(data=EntryData(cert_index=3, seen=seen), domain="example.com")

        with pytest.raises(SerializationError) as exc_info:
            encode_entry(entry)
        assert exc_info.value.code == "encode_failed"
        assert exc_info.value.details["cert_index"] == 3

    def test_non_json_extension_value_fails_to_serialize(self) -> None:
        entry = Entry(data=EntryData(leaf_cert=LeafCert(extensions={"raw": object()})))

        with pytest.raises(SerializationError):
            encode_entry(entry)

    def test_entry_to_dict_is_plain_data(self) -> None:
        entry = decode_frame(json.dumps(SAMPLE_FRAME))
        as_dict = entry_to_dict(entry)

        as_dict["data"]["leaf_cert"]["all_domains"].append("mutated.example")
        assert "mutated.example" not in entry.data.leaf_cert.all_domains


class TestStoredRecordDecoding:
    """Tests for decode_stored."""

    def test_malformed_record_reports_its_key(self) -> None:
        with pytest.raises(FrameDecodeError) as exc_info:
            decode_stored("{broken", key="00000000000000000001-000000")
        assert exc_info.value.key == "00000000000000000001-000000"

    def test_empty_record_is_malformed(self) -> None:
        with pytest.raises(FrameDecodeError):
            decode_stored("", key="k")
