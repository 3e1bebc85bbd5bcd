"""Grafana unified-alerting webhook adapter.

Turns a Grafana contact-point payload into ``AlertEvent``s. A single
webhook may carry several alerts; each becomes its own event.

The external event id must be stable across webhook retries, otherwise
deduplication cannot work. It comes from the ``alertId`` label when the
rule sets one, else from ``<fingerprint>:<startsAt>``, which Grafana keeps
constant for the lifetime of one firing.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlsplit

from src.assignments.schemas import Severity
from src.notifications.schemas import AlertEvent

logger = logging.getLogger(__name__)

# Checked in order
RULE_UID_LABELS = ("rule_id", "__alert_rule_uid__", "alertuid", "rule_uid")

_GRAFANA_RULE_PATH = "/alerting/grafana/"


@dataclass
class GrafanaParseResult:
    events: list[AlertEvent] = field(default_factory=list)
    skipped: int = 0


def extract_rule_uid(alert: Mapping[str, Any]) -> str | None:
    """Rule UID from the alert labels, falling back to its generatorURL."""
    labels = alert.get("labels") or {}
    for key in RULE_UID_LABELS:
        value = labels.get(key)
        if value:
            return str(value)

    generator_url = alert.get("generatorURL") or ""
    if not generator_url:
        return None

    parts = urlsplit(generator_url)
    path = parts.path
    if _GRAFANA_RULE_PATH in path:
        tail = path.split(_GRAFANA_RULE_PATH, 1)[1]
        uid = tail.split("/", 1)[0]
        if uid:
            return uid

    rule_uids = parse_qs(parts.query).get("ruleUID")
    if rule_uids and rule_uids[0]:
        return rule_uids[0]
    return None


def extract_event_id(alert: Mapping[str, Any]) -> str | None:
    labels = alert.get("labels") or {}
    if labels.get("alertId"):
        return str(labels["alertId"])
    fingerprint = alert.get("fingerprint")
    if fingerprint:
        return f"{fingerprint}:{alert.get('startsAt') or ''}"
    return None


def _severity(labels: Mapping[str, Any]) -> Severity | None:
    raw = labels.get("severity")
    if not isinstance(raw, str):
        return None
    try:
        return Severity(raw.strip().upper())
    except ValueError:
        # Unknown labels fall back to the assignment's severity
        return None


def parse_grafana_webhook(body: Mapping[str, Any]) -> GrafanaParseResult:
    """Convert a Grafana webhook body into alert events.

    Alerts without a resolvable rule UID or event id are counted in
    ``skipped`` rather than failing the whole webhook.
    """
    result = GrafanaParseResult()
    common_annotations = body.get("commonAnnotations") or {}

    for alert in body.get("alerts") or []:
        if not isinstance(alert, Mapping):
            result.skipped += 1
            continue

        rule_id = extract_rule_uid(alert)
        event_id = extract_event_id(alert)
        if not rule_id or not event_id:
            logger.warning(
                "Skipping Grafana alert without rule uid or event id (fingerprint=%s)",
                alert.get("fingerprint"),
            )
            result.skipped += 1
            continue

        labels = alert.get("labels") or {}
        annotations = {**common_annotations, **(alert.get("annotations") or {})}
        status = str(alert.get("status") or body.get("status") or "firing").lower()

        result.events.append(
            AlertEvent(
                rule_id=rule_id,
                external_event_id=event_id,
                severity=_severity(labels),
                type="ALERT_RESOLVED" if status == "resolved" else "ALERT_FIRED",
                payload={
                    "title": annotations.get("summary") or labels.get("alertname"),
                    "description": annotations.get("description"),
                    "status": status,
                    "labels": dict(labels),
                    "startsAt": alert.get("startsAt"),
                    "endsAt": alert.get("endsAt"),
                    "generatorURL": alert.get("generatorURL"),
                    "values": alert.get("values"),
                },
            )
        )

    return result
