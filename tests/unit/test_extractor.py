"""
Unit tests for CodeExtractor

Tests the exact-line, preamble and loose strategies and their ordering.
"""

import pytest

from otp_mailbox.core.extractor import CodeExtractor, compile_preambles, exact_line, loose
from otp_mailbox.models.retrieval import ExtractionResult, ExtractionStrategy


@pytest.fixture
def extractor():
    return CodeExtractor()


class TestExactLine:
    """Test the exact-line strategy"""

    def test_line_with_only_code(self, extractor):
        """A line holding only the code wins"""
        body = "Verifica tu correo\n\n938170\n\nEs el código para completar tu registro."

        result = extractor.extract(body)

        assert result == ExtractionResult("938170", ExtractionStrategy.EXACT_LINE)

    def test_surrounding_whitespace_and_crlf(self):
        """Whitespace around the code and CRLF endings are tolerated"""
        assert exact_line("Hola\r\n   123456  \r\nAdios") == "123456"

    def test_seven_digit_line_is_not_a_code(self):
        """Only exactly 6 digits count"""
        assert exact_line("1234567\n12345") is None

    def test_first_matching_line_wins(self):
        assert exact_line("111111\n222222") == "111111"


class TestPreamble:
    """Test the preamble strategy"""

    def test_code_after_phrase_on_same_line(self, extractor):
        """Code following the introductory phrase is found"""
        result = extractor.extract("Verifica tu correo 654321 gracias, pedido 999999")

        assert result.code == "654321"
        assert result.strategy == ExtractionStrategy.PREAMBLE

    def test_phrase_is_case_insensitive(self, extractor):
        result = extractor.extract("Your verification code is: 246810. Ref 135790")

        assert result.code == "246810"
        assert result.strategy == ExtractionStrategy.PREAMBLE

    def test_custom_preambles(self):
        """Preamble phrases are configurable"""
        extractor = CodeExtractor(preambles=["Tu PIN"])

        result = extractor.extract("Pedido 111111. Tu PIN 222222")

        assert result.code == "222222"
        assert result.strategy == ExtractionStrategy.PREAMBLE

    def test_longer_digit_run_after_phrase_is_ignored(self):
        pattern = compile_preambles(["Verifica tu correo"])
        assert pattern.search("Verifica tu correo 1234567") is None

    def test_no_phrases_disables_strategy(self):
        assert compile_preambles([]) is None
        extractor = CodeExtractor(preambles=[])
        assert extractor.extract("Code 123456").strategy == ExtractionStrategy.LOOSE


class TestLoose:
    """Test the loose strategy"""

    def test_standalone_run(self, extractor):
        result = extractor.extract("Use 112233 to sign in")

        assert result.code == "112233"
        assert result.strategy == ExtractionStrategy.LOOSE

    def test_not_inside_longer_number(self):
        """Digits inside a longer number are not a code"""
        assert loose("Call 5551234567 now") is None
        assert loose("Order 12345678, code 445566.") == "445566"

    def test_no_code(self, extractor):
        """Bodies without a 6-digit run yield None"""
        assert extractor.extract("Welcome! Nothing to see here, 12345.") is None

    def test_empty_body(self, extractor):
        assert extractor.extract("") is None


class TestStrategyOrder:
    """First matching strategy wins"""

    def test_exact_line_beats_preamble(self, extractor):
        body = "Verifica tu correo 111111\n222222\n"

        result = extractor.extract(body)

        assert result.code == "222222"
        assert result.strategy == ExtractionStrategy.EXACT_LINE

    def test_result_always_six_ascii_digits(self):
        """Non-ASCII digits never produce a code"""
        assert CodeExtractor().extract("٣٣٣٣٣٣") is None
        with pytest.raises(ValueError):
            ExtractionResult("12345", ExtractionStrategy.LOOSE)
