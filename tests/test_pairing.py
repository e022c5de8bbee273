"""Tests for pairing codes and manual credential entry."""
import pytest

from shared.pairing import PairingCode, validate_host_address, validate_pin, validate_session_id


def test_format_pairing_code():
    code = PairingCode.from_session("192.168.1.20:48632", "ABCD1234", "004211")
    assert code.format() == "192.168.1.20|48632|ABCD1234|004211"
    assert code.host_address == "192.168.1.20:48632"


def test_parse_normalizes_session_id_and_trims():
    code = PairingCode.parse(" 10.0.0.5 | 50123 | abcd1234 | 123456 \n")
    assert code == PairingCode(host="10.0.0.5", port=50123, session_id="ABCD1234", pin="123456")


@pytest.mark.parametrize("text", [
    "10.0.0.5|48632|ABCD1234",
    "10.0.0.5|48632|ABCD1234|123456|extra",
    "10.0.0.5|port|ABCD1234|123456",
    "10.0.0.5|70000|ABCD1234|123456",
    "10.0.0.5|48632|ABC|123456",
    "10.0.0.5|48632|ABCD1234|12a456",
    "|48632|ABCD1234|123456",
])
def test_parse_rejects_bad_codes(text):
    with pytest.raises(ValueError):
        PairingCode.parse(text)


def test_validate_host_address():
    assert validate_host_address(" 192.168.1.10:48632 ") == "192.168.1.10:48632"
    for bad in ("", "192.168.1.10", "192.168.1.10:0", ":48632", "a:b:c"):
        with pytest.raises(ValueError):
            validate_host_address(bad)


def test_validate_session_id_and_pin():
    assert validate_session_id("abcd1234") == "ABCD1234"
    assert validate_pin(" 000000 ") == "000000"
    with pytest.raises(ValueError, match="required"):
        validate_session_id("  ")
    with pytest.raises(ValueError, match="6 digits"):
        validate_pin("1234")
