"""Shared helpers for decoding ConvertTo-Json output"""
from typing import Any, Dict, List

from adprovider.errors import InvariantViolation, ParseError

# Each inner list is one command; its items are the command's fragments
Commands = List[List[str]]


def as_object(document: Any, what: str) -> Dict[str, Any]:
    if not isinstance(document, dict):
        raise ParseError(f"invalid data while unmarshalling {what}, json doc was: {document!r}")
    return document


def get(doc: Dict[str, Any], key: str) -> Any:
    """Property lookup; ConvertTo-Json key casing varies between cmdlets."""
    if key in doc:
        return doc[key]
    lowered = key.lower()
    for k, v in doc.items():
        if k.lower() == lowered:
            return v
    return None


def text(doc: Dict[str, Any], key: str) -> str:
    """String property, '' for null or missing."""
    value = get(doc, key)
    if value is None:
        return ""
    return str(value)


def flag(doc: Dict[str, Any], key: str) -> bool:
    return bool(get(doc, key) or False)


def string_list(value: Any) -> List[str]:
    """Normalise a property that may be null, a scalar or an array."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


def sid(doc: Dict[str, Any]) -> str:
    value = get(doc, "SID")
    if isinstance(value, dict):
        return text(value, "Value")
    return text(doc, "SID")


def require_guid(doc: Dict[str, Any], key: str, what: str) -> str:
    guid = text(doc, key)
    if not guid:
        raise InvariantViolation(f"invalid data while unmarshalling {what} data, json doc was: {doc!r}")
    return guid
