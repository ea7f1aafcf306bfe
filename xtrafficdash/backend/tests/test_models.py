"""
tests/test_models.py

Tests for report parsing and tag → port extraction in models.py.
"""

import pytest

from xtrafficdash.backend.errors import ValidationError
from xtrafficdash.backend.models import extract_port, parse_report


class TestExtractPort:

    @pytest.mark.parametrize("tag,port", [
        ("inbound-443", 443),
        ("vless-ws-8443", 8443),
        ("inbound-0", 0),
        ("inbound", 0),
        ("443-inbound", 0),
        ("inbound-70000", 0),
        ("hysteria2", 0),
    ])
    def test_extract(self, tag, port):
        assert extract_port(tag) == port


class TestParseReport:

    def test_full_report(self):
        report = parse_report({
            "clientTraffics": [{"email": "a@x.io", "up": 1, "down": 2}],
            "inboundTraffics": [{"Tag": "inbound-443", "Up": 3, "Down": 4, "IsInbound": True}],
        })
        assert report.warnings == []
        assert report.clients[0].email == "a@x.io"
        assert report.inbound[0].port == 443
        assert report.inbound[0].up == 3

    def test_either_capitalisation(self):
        report = parse_report({
            "clientTraffics": [{"Email": "a@x.io", "Up": 5, "Down": 6}],
            "inboundTraffics": [{"tag": "t", "up": 7, "down": 8}],
        })
        assert (report.clients[0].up, report.clients[0].down) == (5, 6)
        assert (report.inbound[0].up, report.inbound[0].down) == (7, 8)

    def test_empty_object(self):
        report = parse_report({})
        assert report.inbound == [] and report.clients == [] and report.warnings == []

    def test_missing_counters_are_zero(self):
        report = parse_report({"inboundTraffics": [{"Tag": "t"}]})
        assert report.inbound[0].has_traffic is False

    def test_numeric_strings_accepted(self):
        report = parse_report({"inboundTraffics": [{"Tag": "t", "Up": "12", "Down": 3.0}]})
        assert (report.inbound[0].up, report.inbound[0].down) == (12, 3)

    def test_outbound_leg_flagged(self):
        report = parse_report({"inboundTraffics": [{"Tag": "direct", "Up": 1, "IsInbound": False}]})
        assert report.inbound[0].is_inbound is False

    @pytest.mark.parametrize("item", [
        "not-an-object",
        {"Tag": "", "Up": 1},
        {"Tag": "   ", "Up": 1},
        {"Tag": "t", "Up": "lots"},
        {"Tag": "t", "Up": True},
        {"Tag": "t", "Up": "²"},
        {"Tag": "t", "Down": 1.5},
    ])
    def test_bad_inbound_elements_warn(self, item):
        report = parse_report({"inboundTraffics": [item, {"Tag": "ok", "Up": 1}]})
        assert len(report.warnings) == 1
        assert [d.tag for d in report.inbound] == ["ok"]

    def test_bad_client_elements_warn(self):
        report = parse_report({"clientTraffics": [{"email": None}, 5, {"email": "b@x.io"}]})
        assert len(report.warnings) == 2
        assert [c.email for c in report.clients] == ["b@x.io"]

    def test_non_list_sections_warn(self):
        report = parse_report({"inboundTraffics": {"Tag": "t"}, "clientTraffics": "x"})
        assert len(report.warnings) == 2

    @pytest.mark.parametrize("payload", [None, [], "text", 42])
    def test_non_object_rejected(self, payload):
        with pytest.raises(ValidationError):
            parse_report(payload)
