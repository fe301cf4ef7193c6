"""
Wire format conversion for certificate-transparency feed entries.

Frames arrive as JSON objects. Object keys are matched case-insensitively
(feeds send the subject as ``CN``/``C`` as well as ``cn``/``c``) and JSON
``null`` values decode to the field's empty value.
"""

import json
from typing import Any, Optional, Union

from .exceptions import FrameDecodeError, SerializationError
from .models import Entry, EntryData, LeafCert, Subject


def _lookup(obj: dict, key: str) -> Any:
    """Get a key from a JSON object, falling back to a case-insensitive match."""
    if key in obj:
        return obj[key]
    key_lower = key.lower()
    for candidate, value in obj.items():
        if candidate.lower() == key_lower:
            return value
    return None


def _as_object(value: Any, path: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise FrameDecodeError(
            code="type_mismatch",
            message=f"Expected object at '{path}'",
            details={"path": path, "type": type(value).__name__},
        )
    return value


def _as_str(value: Any, path: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise FrameDecodeError(
            code="type_mismatch",
            message=f"Expected string at '{path}'",
            details={"path": path, "type": type(value).__name__},
        )
    return value


def _as_int(value: Any, path: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FrameDecodeError(
            code="type_mismatch",
            message=f"Expected integer at '{path}'",
            details={"path": path, "type": type(value).__name__},
        )
    if isinstance(value, float) and not value.is_integer():
        raise FrameDecodeError(
            code="type_mismatch",
            message=f"Expected integer at '{path}', got fractional number",
            details={"path": path, "value": value},
        )
    return int(value)


def _as_float(value: Any, path: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FrameDecodeError(
            code="type_mismatch",
            message=f"Expected number at '{path}'",
            details={"path": path, "type": type(value).__name__},
        )
    return float(value)


def _as_str_list(value: Any, path: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise FrameDecodeError(
            code="type_mismatch",
            message=f"Expected array at '{path}'",
            details={"path": path, "type": type(value).__name__},
        )
    return [_as_str(item, f"{path}[{i}]") for i, item in enumerate(value)]


def entry_from_dict(obj: dict) -> Entry:
    """
    Build an Entry from a decoded JSON object.

    Raises:
        FrameDecodeError: If a field has the wrong type
    """
    obj = _as_object(obj, "$")
    data = _as_object(_lookup(obj, "data"), "data")
    leaf = _as_object(_lookup(data, "leaf_cert"), "data.leaf_cert")
    subject = _as_object(_lookup(leaf, "subject"), "data.leaf_cert.subject")

    return Entry(
        message_type=_as_str(_lookup(obj, "message_type"), "message_type"),
        data=EntryData(
            cert_index=_as_int(_lookup(data, "cert_index"), "data.cert_index"),
            cert_link=_as_str(_lookup(data, "cert_link"), "data.cert_link"),
            leaf_cert=LeafCert(
                all_domains=_as_str_list(
                    _lookup(leaf, "all_domains"), "data.leaf_cert.all_domains"
                ),
                subject=Subject(
                    c=_as_str(_lookup(subject, "c"), "data.leaf_cert.subject.c"),
                    cn=_as_str(_lookup(subject, "cn"), "data.leaf_cert.subject.cn"),
                    aggregated=_as_str(
                        _lookup(subject, "aggregated"),
                        "data.leaf_cert.subject.aggregated",
                    ),
                ),
                extensions=_as_object(
                    _lookup(leaf, "extensions"), "data.leaf_cert.extensions"
                ),
                not_before=_as_int(
                    _lookup(leaf, "not_before"), "data.leaf_cert.not_before"
                ),
                not_after=_as_int(
                    _lookup(leaf, "not_after"), "data.leaf_cert.not_after"
                ),
            ),
            seen=_as_float(_lookup(data, "seen"), "data.seen"),
        ),
        domain=_as_str(_lookup(obj, "domain"), "domain"),
    )


def entry_to_dict(entry: Entry) -> dict:
    """Convert an Entry to its JSON object form."""
    leaf = entry.data.leaf_cert
    return {
        "data": {
            "cert_index": entry.data.cert_index,
            "cert_link": entry.data.cert_link,
            "leaf_cert": {
                "all_domains": list(leaf.all_domains),
                "subject": {
                    "c": leaf.subject.c,
                    "cn": leaf.subject.cn,
                    "aggregated": leaf.subject.aggregated,
                },
                "extensions": leaf.extensions,
                "not_before": leaf.not_before,
                "not_after": leaf.not_after,
            },
            "seen": entry.data.seen,
        },
        "message_type": entry.message_type,
        "domain": entry.domain,
    }


def decode_frame(raw: Union[str, bytes]) -> Entry:
    """
    Decode a raw feed frame into an Entry.

    Args:
        raw: Text or binary websocket payload

    Returns:
        The decoded Entry (heartbeats included)

    Raises:
        FrameDecodeError: If the frame is not valid JSON or not an entry object
    """
    try:
        obj = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise FrameDecodeError(
            code="invalid_json",
            message=f"Error decoding json frame: {e}",
            details={"frame_length": len(raw)},
        ) from e

    if not isinstance(obj, dict):
        raise FrameDecodeError(
            code="not_an_object",
            message="Frame is not a JSON object",
            details={"type": type(obj).__name__},
        )

    return entry_from_dict(obj)


def encode_entry(entry: Entry) -> str:
    """
    Serialize an Entry to its canonical wire form.

    Raises:
        SerializationError: If the entry holds values JSON cannot represent
    """
    try:
        return json.dumps(
            entry_to_dict(entry),
            allow_nan=False,
            ensure_ascii=False,
            separators=(",", ":"),
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(
            code="encode_failed",
            message=f"Failed to serialize entry: {e}",
            details={"cert_index": entry.data.cert_index, "domain": entry.domain},
        ) from e


def decode_stored(raw: Union[str, bytes], key: Optional[str] = None) -> Entry:
    """
    Decode a serialized entry read back from storage.

    Raises:
        FrameDecodeError: If the stored record is malformed
    """
    try:
        entry = decode_frame(raw)
    except FrameDecodeError as e:
        if key is not None:
            e.at_key(key)
        raise
    return entry
