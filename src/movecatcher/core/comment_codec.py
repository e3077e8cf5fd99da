"""
CommentCodec: bounded-length order identifiers.

Every order the strategy sends carries a comment of the form

    <prefix>_<system>_<payload>

which is the durable link between a live ticket and the strategy's memory of it
(the logical system and the grid-step sequence that produced the order). Venues
cap the comment length (31 characters on the reference platform), so the
payload degrades through explicit tiers:

    compact    one base64 character per value (0..63), or "." + dot-joined
               decimals when a value does not fit in one character
    truncated  longest head of whole values that fits, followed by "~"
    hashed     "#" + SHA-1 hex digest of the full "(a,b,c)" rendering, cut to fit

Compact payloads round-trip exactly, truncated payloads decode to a head of the
sequence, hashed payloads only identify the sequence.
"""

from __future__ import annotations

import hashlib
import string
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from movecatcher.core.errors import MalformedIdentifier

BASE64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"

TRUNCATION_MARK = "~"
HASH_MARK = "#"
DECIMAL_MARK = "."

DEFAULT_PREFIX = "MoveCatcher"
DEFAULT_MAX_LEN = 31


class CommentTier(Enum):
    COMPACT = "compact"
    TRUNCATED = "truncated"
    HASHED = "hashed"


@dataclass(frozen=True)
class DecodedComment:
    system: str
    tier: CommentTier
    sequence: Optional[List[int]] = None
    digest: Optional[str] = None

    @property
    def is_lossy(self) -> bool:
        return self.tier is not CommentTier.COMPACT


def render_sequence(seq: Sequence[int]) -> str:
    """Naive rendering, e.g. [0, 1, 2] -> "(0,1,2)"."""
    return "(" + ",".join(str(int(v)) for v in seq) + ")"


def parse_sequence(text: str) -> List[int]:
    """Inverse of render_sequence; tolerates whitespace."""
    cleaned = text.replace("(", "").replace(")", "").replace(" ", "")
    return [int(p) for p in cleaned.split(",") if p]


def compact_payload(seq: Sequence[int]) -> str:
    values = [int(v) for v in seq]
    if any(v < 0 for v in values):
        raise ValueError(f"sequence values must be non-negative: {values}")
    if all(v < len(BASE64) for v in values):
        return "".join(BASE64[v] for v in values)
    return DECIMAL_MARK + DECIMAL_MARK.join(str(v) for v in values)


class CommentCodec:
    """
    Encode/decode `<prefix>_<system>_<payload>` identifiers.

    Args:
        prefix: Fixed strategy prefix
        max_len: Platform comment limit
        min_truncated_items: Fewest values a truncated payload may keep before
            the codec falls back to hashing
    """

    def __init__(
        self,
        prefix: str = DEFAULT_PREFIX,
        max_len: int = DEFAULT_MAX_LEN,
        min_truncated_items: int = 2,
    ) -> None:
        self.prefix = prefix
        self.max_len = max_len
        self.min_truncated_items = max(1, min_truncated_items)

    def header(self, system: str) -> str:
        return f"{self.prefix}_{system}_"

    def room(self, system: str) -> int:
        """Characters left for the payload."""
        return self.max_len - len(self.header(system))

    def belongs_to(self, comment: str, system: str) -> bool:
        """Prefix match only; venues may append text to comments."""
        return (comment or "").startswith(self.header(system))

    def encode(self, system: str, seq: Sequence[int]) -> str:
        header = self.header(system)
        room = self.max_len - len(header)
        if room < 2:
            raise ValueError(f"no room for payload: prefix={self.prefix!r} system={system!r} max_len={self.max_len}")

        body = compact_payload(seq)
        if len(body) <= room:
            return header + body

        truncated = self._truncate(seq, room)
        if truncated is not None:
            return header + truncated

        digest = hashlib.sha1(render_sequence(seq).encode("ascii")).hexdigest()
        return header + HASH_MARK + digest[: room - 1]

    def _truncate(self, seq: Sequence[int], room: int) -> Optional[str]:
        # Whole values only, so the head always decodes cleanly.
        for keep in range(len(seq) - 1, self.min_truncated_items - 1, -1):
            candidate = compact_payload(seq[:keep]) + TRUNCATION_MARK
            if len(candidate) <= room:
                return candidate
        return None

    def decode(self, comment: str) -> DecodedComment:
        """
        Decode a comment produced by `encode`.

        Raises:
            MalformedIdentifier: wrong prefix, missing system, or a payload that
                is not one of the known tiers
        """
        lead = self.prefix + "_"
        if not comment or not comment.startswith(lead):
            raise MalformedIdentifier(comment, "missing prefix")
        rest = comment[len(lead):]
        if "_" not in rest:
            raise MalformedIdentifier(comment, "missing system separator")
        system, payload = rest.split("_", 1)
        if not system:
            raise MalformedIdentifier(comment, "empty system tag")

        if payload.startswith(HASH_MARK):
            digest = payload[1:]
            if not digest or any(ch not in string.hexdigits for ch in digest):
                raise MalformedIdentifier(comment, "bad hash payload")
            return DecodedComment(system=system, tier=CommentTier.HASHED, digest=digest)

        tier = CommentTier.COMPACT
        if payload.endswith(TRUNCATION_MARK):
            tier = CommentTier.TRUNCATED
            payload = payload[:-1]

        return DecodedComment(system=system, tier=tier, sequence=self._decode_values(comment, payload))

    @staticmethod
    def _decode_values(comment: str, payload: str) -> List[int]:
        if payload.startswith(DECIMAL_MARK):
            parts = payload[1:].split(DECIMAL_MARK)
            if not all(p.isdigit() for p in parts):
                raise MalformedIdentifier(comment, "bad decimal payload")
            return [int(p) for p in parts]
        values = []
        for ch in payload:
            idx = BASE64.find(ch)
            if idx < 0:
                raise MalformedIdentifier(comment, f"invalid character {ch!r}")
            values.append(idx)
        return values

    def system_of(self, comment: str) -> Optional[str]:
        """System tag from a comment, or None if it is not one of ours."""
        lead = self.prefix + "_"
        if not comment or not comment.startswith(lead):
            return None
        rest = comment[len(lead):]
        if "_" not in rest:
            return None
        system = rest.split("_", 1)[0]
        return system or None
