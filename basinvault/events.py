"""
Basin Vault Client - Event Records

An Event is what the vault service reports for one ingested submission.
The client never builds or mutates these; it only decodes them from the
list endpoint.

Wire format (one element of the JSON array):
    {"cid": "bafy...", "timestamp": 1700000000,
     "is_archived": false, "cache_expiry": "2024-01-01T00:00:00Z"}
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from .errors import DecodeError


@dataclass(frozen=True)
class Event:
    """One committed vault event."""

    cid: str
    timestamp: int
    is_archived: bool = False
    cache_expiry: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        """
        Build an Event from one decoded JSON object.

        Rules:
        - cid: required, non-empty string
        - timestamp: required integer (unix seconds); bools are rejected
        - is_archived: optional bool, defaults to False
        - cache_expiry: optional string or null (archived events may have none)

        Raises:
            DecodeError: If the object doesn't match the rules above
        """
        if not isinstance(data, dict):
            raise DecodeError(f"Event must be a JSON object, got {type(data).__name__}")

        cid = data.get("cid")
        if not isinstance(cid, str) or not cid:
            raise DecodeError(f"Event has missing or invalid 'cid': {cid!r}")

        timestamp = data.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise DecodeError(f"Event {cid} has invalid 'timestamp': {timestamp!r}")

        is_archived = data.get("is_archived", False)
        if not isinstance(is_archived, bool):
            raise DecodeError(f"Event {cid} has invalid 'is_archived': {is_archived!r}")

        cache_expiry = data.get("cache_expiry")
        if cache_expiry is not None and not isinstance(cache_expiry, str):
            raise DecodeError(f"Event {cid} has invalid 'cache_expiry': {cache_expiry!r}")

        return cls(
            cid=cid,
            timestamp=timestamp,
            is_archived=is_archived,
            cache_expiry=cache_expiry,
        )

    def to_dict(self) -> dict:
        """Wire-format dict (same keys the service sends)."""
        return {
            "cid": self.cid,
            "timestamp": self.timestamp,
            "is_archived": self.is_archived,
            "cache_expiry": self.cache_expiry,
        }

    @property
    def cache_expires_at(self) -> Optional[datetime]:
        """cache_expiry parsed to an aware datetime, or None if absent/unparseable."""
        if not self.cache_expiry:
            return None
        text = self.cache_expiry
        # fromisoformat() only accepts a trailing 'Z' from Python 3.11
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None


def decode_events(payload: Any) -> List[Event]:
    """
    Decode a parsed JSON payload into Events, keeping server order.

    Raises:
        DecodeError: If payload isn't a list of valid event objects
    """
    # A vault with no events may answer with JSON null
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise DecodeError(f"Expected a JSON array of events, got {type(payload).__name__}")
    return [Event.from_dict(item) for item in payload]
