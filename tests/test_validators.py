"""Tests for device identifier validation."""

import pytest

from hotspot.exceptions import InvalidRequestError
from hotspot.models.domain import DeviceIdentifier
from hotspot.validators import device_identifier, normalize_device, normalize_ip, normalize_mac


class TestNormalizeMac:
    @pytest.mark.parametrize(
        "raw",
        ["aa:bb:cc:dd:ee:ff", "AA:BB:CC:DD:EE:FF", "aa-bb-cc-dd-ee-ff", "  Aa:bB:cc:dd:EE:ff  "],
    )
    def test_canonical_form(self, raw: str):
        assert normalize_mac(raw) == "aa:bb:cc:dd:ee:ff"

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "aa:bb:cc:dd:ee",
            "aa:bb:cc:dd:ee:ff:00",
            "aa:bb-cc:dd:ee:ff",
            "aabb.ccdd.eeff",
            "gg:bb:cc:dd:ee:ff",
            "aa:bb:cc:dd:ee:ff -j ACCEPT",
            "aa:bb:cc:dd:ee:ff\nbb:cc:dd:ee:ff:00",
        ],
    )
    def test_rejects(self, raw: str):
        with pytest.raises(InvalidRequestError):
            normalize_mac(raw)


class TestNormalizeIp:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("10.0.0.1", "10.0.0.1"),
            (" 192.168.1.20 ", "192.168.1.20"),
            ("2001:0db8:0000:0000:0000:0000:0000:0001", "2001:db8::1"),
        ],
    )
    def test_canonical_form(self, raw: str, expected: str):
        assert normalize_ip(raw) == expected

    @pytest.mark.parametrize(
        "raw", ["", "10.0.0", "256.1.1.1", "10.0.0.1/24", "localhost", "10.0.0.1; rm -rf /"]
    )
    def test_rejects(self, raw: str):
        with pytest.raises(InvalidRequestError):
            normalize_ip(raw)


class TestDeviceIdentifier:
    def test_prefers_mac(self):
        assert device_identifier("AA:BB:CC:DD:EE:FF", "10.0.0.1") == DeviceIdentifier(
            kind="mac", value="aa:bb:cc:dd:ee:ff"
        )

    def test_falls_back_to_ip(self):
        identifier = device_identifier(None, "10.0.0.1")
        assert identifier.kind == "ip"
        assert str(identifier) == "10.0.0.1"

    @pytest.mark.parametrize("mac,ip", [(None, None), ("", ""), ("", None)])
    def test_requires_one(self, mac, ip):
        with pytest.raises(InvalidRequestError):
            device_identifier(mac, ip)

    def test_normalize_device_validates_both(self):
        with pytest.raises(InvalidRequestError):
            normalize_device("aa:bb:cc:dd:ee:ff", "not-an-ip")
        assert normalize_device(None, "10.0.0.1") == (None, "10.0.0.1")
