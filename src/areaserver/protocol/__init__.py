"""
=============================================================================
RECTANGLE AREA PROTOCOL
=============================================================================

The application layer of the server: a comma-separated text format
carried over a TCP byte stream.

    CLIENT                                          SERVER
       │   "2,3,4,5"                                  │
       │  ──────────────────────────────────────────► │
       │                                              │  parse → compute
       │                                  "26,6,20"   │
       │  ◄────────────────────────────────────────── │

=============================================================================
"""

from .codec import (
    Batch,
    ParsedRequest,
    ParsePolicy,
    Rectangle,
    RectangleResult,
    encode_request,
    format_number,
    format_response,
    parse_request,
    parse_response,
)

__all__ = [
    "Batch",
    "ParsedRequest",
    "ParsePolicy",
    "Rectangle",
    "RectangleResult",
    "encode_request",
    "format_number",
    "format_response",
    "parse_request",
    "parse_response",
]
