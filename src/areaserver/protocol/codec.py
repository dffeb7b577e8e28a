"""
=============================================================================
FRAME CODEC
=============================================================================

Turns raw frame bytes into a batch of rectangles, and a computed batch
back into response bytes.

=============================================================================
WIRE FORMAT
=============================================================================

Both directions are plain UTF-8 text with comma-separated decimal tokens:

    ┌─────────────────────────────────────────────────────────────────────┐
    │  REQUEST                                                             │
    │  ─────────────────────────────────────────────────────────────────  │
    │  2,3,4,5                                                             │
    │  └─┬─┘ └─┬─┘                                                         │
    │  rect 0  rect 1       (width, height) pairs, even token count       │
    ├─────────────────────────────────────────────────────────────────────┤
    │  RESPONSE                                                            │
    │  ─────────────────────────────────────────────────────────────────  │
    │  26,6,20                                                             │
    │  └┬┘ └─┬──┘                                                          │
    │ total  area of each rectangle, in request order                     │
    └─────────────────────────────────────────────────────────────────────┘

An empty request is a valid degenerate input: it yields an empty batch
and the response is just the total, "0".

=============================================================================
INVALID PAIRS
=============================================================================

    SKIP_INVALID (default)   "2,3,x,5" → one rectangle, dropped=1
    STRICT                   "2,3,x,5" → ParseError(NOT_A_NUMBER)

=============================================================================
NUMBER FORMATTING
=============================================================================

Default float repr is not stable across implementations ("26.0" vs "26",
"0.30000000000000004" vs "0.3"). Every number goes out fixed-point with
six fractional digits, then trailing zeros are trimmed:

    26.0                → "26"
    0.1 + 0.2           → "0.3"
    2.5 * 1.5           → "3.75"
    -0.0                → "0"

=============================================================================
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence, Tuple

from ..errors import ParseError, ParseErrorKind


# Plain decimal literal: optional sign, digits with optional fraction
# (or a bare fraction), optional exponent. Rejects "nan", "inf", "1_0", "0x1".
_DECIMAL_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")

FRACTION_DIGITS = 6
SEPARATOR = ","


class ParsePolicy(Enum):
    """How non-numeric dimension pairs are treated."""
    SKIP_INVALID = "skip"
    STRICT = "strict"

    @classmethod
    def from_name(cls, name: str) -> "ParsePolicy":
        try:
            return cls(name.lower())
        except ValueError:
            raise ValueError(
                f"Unknown parse policy: {name!r} (expected 'skip' or 'strict')"
            ) from None


@dataclass(frozen=True)
class Rectangle:
    """One width/height pair parsed from a request."""
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class RectangleResult:
    """A rectangle together with its computed area."""
    width: float
    height: float
    area: float

    @classmethod
    def of(cls, rect: Rectangle) -> "RectangleResult":
        return cls(width=rect.width, height=rect.height, area=rect.area)


Batch = Tuple[Rectangle, ...]


@dataclass(frozen=True)
class ParsedRequest:
    """
    Result of parsing one request frame.

    Attributes:
        rectangles: The batch, in request order.
        dropped: Number of pairs discarded under SKIP_INVALID.
    """
    rectangles: Batch = ()
    dropped: int = 0

    def __len__(self) -> int:
        return len(self.rectangles)


def _to_number(token: str) -> float:
    """Convert one token, raising ValueError if it isn't a finite decimal."""
    if not _DECIMAL_RE.match(token):
        raise ValueError(f"not a decimal number: {token!r}")
    value = float(token)
    if not math.isfinite(value):
        raise ValueError(f"not a finite number: {token!r}")
    return value


def parse_request(
    raw: bytes,
    policy: ParsePolicy = ParsePolicy.SKIP_INVALID,
) -> ParsedRequest:
    """
    Parse a request frame into a batch of rectangles.

    Args:
        raw: Frame bytes as received from the socket.
        policy: What to do with a pair that contains a non-numeric token.

    Returns:
        ParsedRequest with the rectangles and the count of dropped pairs.

    Raises:
        ParseError: ENCODING if the frame is not UTF-8, ODD_TOKEN_COUNT if
            the tokens can't be paired, NOT_A_NUMBER under STRICT policy.
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"Request is not valid UTF-8: {e}", ParseErrorKind.ENCODING)

    if not text.strip():
        return ParsedRequest()

    tokens = [token.strip() for token in text.split(SEPARATOR)]
    if len(tokens) % 2 != 0:
        raise ParseError(
            f"Expected width/height pairs, got {len(tokens)} tokens",
            ParseErrorKind.ODD_TOKEN_COUNT,
        )

    rectangles = []
    dropped = 0
    total = 0.0
    for i in range(0, len(tokens), 2):
        try:
            width = _to_number(tokens[i])
            height = _to_number(tokens[i + 1])
            # Every area and the running total must stay representable
            if not math.isfinite(total + width * height):
                raise ValueError(f"area of {tokens[i]} x {tokens[i + 1]} overflows")
        except ValueError as e:
            if policy is ParsePolicy.STRICT:
                raise ParseError(
                    f"Invalid pair {i // 2}: {e}", ParseErrorKind.NOT_A_NUMBER
                ) from e
            dropped += 1
            continue
        total += width * height
        rectangles.append(Rectangle(width, height))

    return ParsedRequest(rectangles=tuple(rectangles), dropped=dropped)


def format_number(value: float) -> str:
    """Render a float with a stable fixed-point representation."""
    text = f"{value:.{FRACTION_DIGITS}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text


def format_response(total: float, areas: Sequence[float]) -> bytes:
    """
    Build a response frame: the total first, then each area in order.

        format_response(26, [6, 20])  →  b"26,6,20"
        format_response(0, [])        →  b"0"
    """
    fields = [format_number(total)]
    fields.extend(format_number(area) for area in areas)
    return SEPARATOR.join(fields).encode("utf-8")


# =============================================================================
# CLIENT SIDE
# =============================================================================
# The client speaks the same format in reverse. Kept here so both ends
# share one definition of a "number on the wire".


def encode_request(rectangles: Iterable[Tuple[float, float]]) -> bytes:
    """Encode (width, height) pairs as a request frame."""
    tokens = []
    for width, height in rectangles:
        tokens.append(format_number(width))
        tokens.append(format_number(height))
    return SEPARATOR.join(tokens).encode("utf-8")


def parse_response(raw: bytes) -> Tuple[float, list]:
    """
    Parse a response frame into (total, areas).

    Raises:
        ParseError: If the frame is empty, not UTF-8, or has a bad field.
    """
    try:
        text = raw.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise ParseError(f"Response is not valid UTF-8: {e}", ParseErrorKind.ENCODING)

    if not text:
        raise ParseError("Empty response", ParseErrorKind.NOT_A_NUMBER)

    try:
        values = [_to_number(field.strip()) for field in text.split(SEPARATOR)]
    except ValueError as e:
        raise ParseError(f"Invalid response field: {e}", ParseErrorKind.NOT_A_NUMBER) from e

    return values[0], values[1:]
