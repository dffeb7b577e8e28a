"""
Unit tests for the frame codec.
"""

import pytest

from areaserver.errors import ParseError, ParseErrorKind
from areaserver.protocol.codec import (
    ParsedRequest,
    ParsePolicy,
    Rectangle,
    encode_request,
    format_number,
    format_response,
    parse_request,
    parse_response,
)


class TestParseRequest:
    """Tests for parse_request."""

    def test_two_rectangles(self):
        """Test pairs become rectangles in request order."""
        parsed = parse_request(b"2,3,4,5")

        assert parsed.rectangles == (Rectangle(2.0, 3.0), Rectangle(4.0, 5.0))
        assert parsed.dropped == 0
        assert len(parsed) == 2

    def test_single_rectangle(self):
        parsed = parse_request(b"1,1")
        assert parsed.rectangles == (Rectangle(1.0, 1.0),)

    def test_whitespace_around_tokens(self):
        """Test tokens are trimmed, including a trailing newline."""
        parsed = parse_request(b" 2 , 3 ,4,5\n")
        assert [r.area for r in parsed.rectangles] == [6.0, 20.0]

    def test_decimal_and_exponent(self):
        parsed = parse_request(b"2.5,1.5,1e1,.5")
        assert parsed.rectangles == (Rectangle(2.5, 1.5), Rectangle(10.0, 0.5))

    def test_empty_request(self):
        """Test an empty frame is a valid empty batch."""
        assert parse_request(b"") == ParsedRequest()
        assert parse_request(b"  \n") == ParsedRequest()

    def test_skip_invalid_pair(self):
        """Test a non-numeric pair is dropped and counted."""
        parsed = parse_request(b"2,3,x,5")

        assert parsed.rectangles == (Rectangle(2.0, 3.0),)
        assert parsed.dropped == 1

    def test_skip_keeps_order_of_remaining(self):
        parsed = parse_request(b"x,1,2,3,4,y,5,6")

        assert parsed.rectangles == (Rectangle(2.0, 3.0), Rectangle(5.0, 6.0))
        assert parsed.dropped == 2

    @pytest.mark.parametrize("token", ["nan", "inf", "-inf", "0x10", "1_000", ""])
    def test_non_decimal_tokens_rejected(self, token):
        """Test only plain decimal literals count as numbers."""
        parsed = parse_request(f"2,3,{token},5".encode())
        assert parsed.dropped == 1

    def test_strict_rejects_invalid_pair(self):
        with pytest.raises(ParseError) as exc_info:
            parse_request(b"2,3,x,5", ParsePolicy.STRICT)

        assert exc_info.value.kind == ParseErrorKind.NOT_A_NUMBER

    def test_strict_accepts_valid_request(self):
        parsed = parse_request(b"2,3,4,5", ParsePolicy.STRICT)
        assert len(parsed) == 2

    def test_odd_token_count(self):
        with pytest.raises(ParseError) as exc_info:
            parse_request(b"2,3,4")

        assert exc_info.value.kind == ParseErrorKind.ODD_TOKEN_COUNT

    def test_invalid_utf8(self):
        with pytest.raises(ParseError) as exc_info:
            parse_request(b"\xff\xfe,1")

        assert exc_info.value.kind == ParseErrorKind.ENCODING

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_request(b"1")

    def test_negative_and_zero_dimensions_pass_through(self):
        """Test sign and zero are not validated, only parsed."""
        parsed = parse_request(b"-2,3,0,5")
        assert [r.area for r in parsed.rectangles] == [-6.0, 0.0]

    def test_overflowing_area_dropped(self):
        """Test finite dimensions whose area is infinite count as invalid."""
        parsed = parse_request(b"1e200,1e200,2,3")

        assert parsed.rectangles == (Rectangle(2.0, 3.0),)
        assert parsed.dropped == 1

    def test_overflowing_total_dropped(self):
        """Test the pair that would push the total to infinity is dropped."""
        parsed = parse_request(b"1e154,1e154,1e154,1e154,1e154,1e154")

        assert len(parsed) == 1
        assert parsed.dropped == 2

    def test_strict_rejects_overflow(self):
        with pytest.raises(ParseError) as exc_info:
            parse_request(b"1e200,1e200", ParsePolicy.STRICT)

        assert exc_info.value.kind == ParseErrorKind.NOT_A_NUMBER


class TestParsePolicy:
    """Tests for ParsePolicy.from_name."""

    def test_from_name(self):
        assert ParsePolicy.from_name("skip") is ParsePolicy.SKIP_INVALID
        assert ParsePolicy.from_name("STRICT") is ParsePolicy.STRICT

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            ParsePolicy.from_name("lenient")


class TestFormatting:
    """Tests for number and response formatting."""

    @pytest.mark.parametrize("value,expected", [
        (26.0, "26"),
        (0.1 + 0.2, "0.3"),
        (2.5 * 1.5, "3.75"),
        (-0.0, "0"),
        (-6.0, "-6"),
        (1e-9, "0"),
        (1234567.125, "1234567.125"),
    ])
    def test_format_number(self, value, expected):
        assert format_number(value) == expected

    def test_format_response(self):
        assert format_response(26.0, [6.0, 20.0]) == b"26,6,20"

    def test_format_empty_response(self):
        """Test an empty batch is answered with just the total."""
        assert format_response(0.0, []) == b"0"


class TestClientSide:
    """Tests for encode_request and parse_response."""

    def test_encode_request(self):
        assert encode_request([(2, 3), (4.5, 5)]) == b"2,3,4.5,5"

    def test_encode_empty(self):
        assert encode_request([]) == b""

    def test_parse_response(self):
        total, areas = parse_response(b"26,6,20")

        assert total == 26.0
        assert areas == [6.0, 20.0]

    def test_parse_total_only(self):
        assert parse_response(b"0\n") == (0.0, [])

    def test_parse_empty_response(self):
        with pytest.raises(ParseError):
            parse_response(b"")

    def test_parse_bad_field(self):
        with pytest.raises(ParseError):
            parse_response(b"26,abc")
