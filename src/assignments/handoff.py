"""Hand-off of the selected assignee to the external Case Service.

The Case Service owns case creation; this module only tells it which rule
fired and who should own the resulting case. A failed hand-off is logged
and reported but never fails the dispatch and is never retried here.
"""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass
class HandoffResult:
    """Outcome of one hand-off attempt."""

    delivered: bool
    status_code: int | None = None
    error: str | None = None


class CaseServiceClient:
    """Posts ``{ruleId, assigneeId, externalEventId}`` to the Case Service.

    Creates a short-lived ``httpx.AsyncClient`` per call. When no URL is
    configured the hand-off is only logged, which is the normal mode for
    local development and tests.
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float = 5.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._headers = headers or {}

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def hand_off(
        self,
        rule_id: str,
        assignee_id: int | None,
        external_event_id: str | None = None,
    ) -> HandoffResult:
        payload = {
            "ruleId": rule_id,
            "assigneeId": assignee_id,
            "externalEventId": external_event_id,
        }
        if not self._url:
            logger.info(
                "Case hand-off (no Case Service configured): rule=%s assignee=%s",
                rule_id, assignee_id,
            )
            return HandoffResult(delivered=False)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload, headers=self._headers)
        except httpx.TimeoutException:
            logger.warning("Case Service timed out for rule %s", rule_id)
            return HandoffResult(delivered=False, error="timeout")
        except httpx.HTTPError as e:
            logger.warning("Case Service request failed for rule %s: %s", rule_id, e)
            return HandoffResult(delivered=False, error=str(e))

        if resp.is_success:
            return HandoffResult(delivered=True, status_code=resp.status_code)

        logger.warning(
            "Case Service returned %d for rule %s", resp.status_code, rule_id,
        )
        return HandoffResult(
            delivered=False,
            status_code=resp.status_code,
            error=f"HTTP {resp.status_code}",
        )
