"""Tests for the Grafana webhook adapter."""

from src.assignments.schemas import Severity
from src.notifications.grafana import extract_event_id, extract_rule_uid, parse_grafana_webhook


def _alert(**overrides):
    alert = {
        "status": "firing",
        "labels": {"alertname": "RevenueDrop", "__alert_rule_uid__": "abc123", "severity": "high"},
        "annotations": {"summary": "Revenue dropped 20%"},
        "startsAt": "2026-03-10T12:00:00Z",
        "endsAt": "0001-01-01T00:00:00Z",
        "fingerprint": "f00d",
        "generatorURL": "http://grafana/alerting/grafana/abc123/view",
    }
    alert.update(overrides)
    return alert


class TestExtractRuleUid:
    def test_from_labels(self):
        assert extract_rule_uid(_alert()) == "abc123"

    def test_rule_id_label_wins(self):
        alert = _alert(labels={"rule_id": "R9", "__alert_rule_uid__": "abc123"})
        assert extract_rule_uid(alert) == "R9"

    def test_from_generator_path(self):
        assert extract_rule_uid(_alert(labels={})) == "abc123"

    def test_from_generator_query(self):
        alert = _alert(labels={}, generatorURL="http://grafana/alerting/list?ruleUID=xyz")
        assert extract_rule_uid(alert) == "xyz"

    def test_missing(self):
        assert extract_rule_uid(_alert(labels={}, generatorURL="")) is None


class TestExtractEventId:
    def test_alert_id_label(self):
        assert extract_event_id(_alert(labels={"alertId": 77})) == "77"

    def test_fingerprint_and_start(self):
        assert extract_event_id(_alert()) == "f00d:2026-03-10T12:00:00Z"

    def test_missing(self):
        assert extract_event_id(_alert(fingerprint=None)) is None


class TestParseWebhook:
    def test_firing_alert(self):
        result = parse_grafana_webhook({"status": "firing", "alerts": [_alert()]})

        assert result.skipped == 0
        event = result.events[0]
        assert event.rule_id == "abc123"
        assert event.type == "ALERT_FIRED"
        assert event.severity is Severity.HIGH
        assert event.title == "Revenue dropped 20%"

    def test_resolved_alert(self):
        result = parse_grafana_webhook({"alerts": [_alert(status="resolved")]})
        assert result.events[0].type == "ALERT_RESOLVED"

    def test_common_annotations_are_merged(self):
        alert = _alert(annotations={})
        result = parse_grafana_webhook({
            "commonAnnotations": {"summary": "shared", "description": "details"},
            "alerts": [alert],
        })
        assert result.events[0].title == "shared"
        assert result.events[0].message == "details"

    def test_unknown_severity_left_unset(self):
        alert = _alert(labels={"__alert_rule_uid__": "abc123", "severity": "page"})
        assert parse_grafana_webhook({"alerts": [alert]}).events[0].severity is None

    def test_unroutable_alerts_are_skipped(self):
        result = parse_grafana_webhook({
            "alerts": [
                _alert(),
                _alert(labels={}, generatorURL=""),
                _alert(fingerprint=None),
                "not-an-alert",
            ],
        })
        assert len(result.events) == 1
        assert result.skipped == 3

    def test_empty_body(self):
        result = parse_grafana_webhook({})
        assert result.events == []
        assert result.skipped == 0
