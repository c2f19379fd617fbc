"""
Unit tests for reply intent classification
"""
import pytest

from bookingflow.services.intent import Intent, classify, extract_selection, normalize_text


class TestClassify:
    """Test yes / no / none classification"""

    @pytest.mark.parametrize("text", ["כן", "yes", "כן, אגיע", "Yes!", "  כן  ", "מאשרת"])
    def test_yes(self, text):
        """Test affirmative replies"""
        assert classify(text) == Intent.YES

    @pytest.mark.parametrize("text", ["לא", "cancel", "לא אוכל להגיע", "לא, בסוף לא אוכל להגיע", "NO", "I can't make it"])
    def test_no(self, text):
        """Test negative replies"""
        assert classify(text) == Intent.NO

    @pytest.mark.parametrize("text", ["3", "", "תודה", "   ", None, "maybe later"])
    def test_none(self, text):
        """Test anything unclear is not acted on"""
        assert classify(text) == Intent.NONE

    def test_mixed_reply_is_none(self):
        """Test a reply matching both sides is not acted on"""
        assert classify("כן אגיע לא אוכל") == Intent.NONE


class TestHelpers:
    """Test text helpers"""

    def test_normalize_text(self):
        """Test punctuation and whitespace are collapsed"""
        assert normalize_text("  כן,  אגיע!! ") == "כן אגיע"

    def test_extract_selection(self):
        """Test pure digits parse as a selection"""
        assert extract_selection("3") == 3
        assert extract_selection(" 12 ") == 12
        assert extract_selection("3a") is None
        assert extract_selection("²") is None
