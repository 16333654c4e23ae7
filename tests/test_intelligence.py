"""Tests for lanscan/oui/intelligence.py"""

import pytest

from lanscan.oui.intelligence import assess_risk_level, infer_capabilities, security_profile


class TestCapabilities:

    def test_type_capabilities(self):
        assert infer_capabilities("router") == ["routing", "dhcp", "nat", "firewall"]

    def test_ports_add_services(self):
        assert infer_capabilities("computer", [80, 22, 443]) == ["ssh", "web_interface"]

    def test_no_duplicates(self):
        assert infer_capabilities("storage", [445]) == ["file_sharing"]

    @pytest.mark.parametrize("device_type", [None, "unknown", "spaceship"])
    def test_unknown_type(self, device_type):
        assert infer_capabilities(device_type) == []

    def test_does_not_mutate_table(self):
        infer_capabilities("router", [22])
        assert infer_capabilities("router") == ["routing", "dhcp", "nat", "firewall"]


class TestRiskLevel:

    @pytest.mark.parametrize("device_type,expected", [
        ("camera", "high"),
        ("iot", "high"),
        ("printer", "high"),
        ("router", "medium"),
        ("switch", "medium"),
        ("computer", "low"),
        ("mobile", "low"),
        ("unknown", "medium"),
        (None, "medium"),
    ])
    def test_levels(self, device_type, expected):
        assert assess_risk_level(device_type) == expected


class TestSecurityProfile:

    def test_camera(self):
        profile = security_profile("camera")

        assert profile.risk_level == "high"
        assert profile.concerns
        assert profile.recommendations == [
            "Update the firmware and change default credentials",
            "Review privacy settings and access controls",
        ]

    def test_telnet_on_router(self):
        profile = security_profile("router", ["routing", "telnet"])

        assert profile.risk_level == "medium"
        assert "Telnet sends credentials in clear text" in profile.concerns
        assert profile.recommendations == ["Disable Telnet and use SSH instead"]

    def test_computer_has_no_advice(self):
        profile = security_profile("computer")

        assert profile.to_dict() == {"risk_level": "low", "concerns": [], "recommendations": []}
