"""
Unit tests for phone normalization
"""
import pytest

from bookingflow.errors import InvalidPhoneError
from bookingflow.services.phone import (
    is_valid_e164,
    normalize_e164,
    require_e164,
    to_channel_address,
)


class TestNormalizeE164:
    """Test canonical phone form"""

    @pytest.mark.parametrize(
        "raw",
        [
            "+972501234567",
            "0501234567",
            "050-123-4567",
            "050 123 4567",
            "501234567",
            "972501234567",
            "whatsapp:+972501234567",
        ],
    )
    def test_israeli_inputs_share_one_form(self, raw):
        """Test local, international and channel-prefixed inputs normalize alike"""
        assert normalize_e164(raw) == "+972501234567"

    def test_foreign_number_kept(self):
        """Test numbers with a + prefix keep their country code"""
        assert normalize_e164("+1 (555) 000-1111") == "+15550001111"

    def test_empty_input(self):
        """Test inputs without digits normalize to empty"""
        assert normalize_e164("") == ""
        assert normalize_e164(None) == ""
        assert normalize_e164("whatsapp:") == ""

    def test_validity(self):
        """Test E.164 validity check"""
        assert is_valid_e164("0501234567")
        assert not is_valid_e164("abc")

    def test_require_raises_for_garbage(self):
        """Test require_e164 rejects unparseable input"""
        with pytest.raises(InvalidPhoneError):
            require_e164("n/a")


class TestChannelAddress:
    """Test provider addresses"""

    def test_whatsapp_prefix(self):
        """Test WhatsApp addresses carry the channel prefix"""
        assert to_channel_address("0501234567", "whatsapp") == "whatsapp:+972501234567"

    def test_sms_plain(self):
        """Test SMS addresses are plain E.164"""
        assert to_channel_address("0501234567", "sms") == "+972501234567"
