"""
Threat detector.

Runs the rule set against processed events. A rule that cannot be
evaluated is logged and skipped; the remaining rules still run.
"""

import logging
from datetime import datetime
from typing import Callable

from auditflow.core.config import DetectionConfig
from auditflow.core.errors import DetectionError
from auditflow.models import AuditEvent, SecurityContext, ThreatFinding, utc_now
from auditflow.security.rules import EventHistory, ThreatRule, default_rules
from auditflow.store.base import DocumentStore, StorageError

logger = logging.getLogger(__name__)


class ThreatDetector:
    """
    Rule-based threat detector.

    Example:
        detector = ThreatDetector(store, DetectionConfig(failed_login_threshold=3))
        findings, context = await detector.assess(event)
        print(context.threat_level)
    """

    def __init__(
        self,
        store: DocumentStore,
        config: DetectionConfig | None = None,
        rules: list[ThreatRule] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or DetectionConfig()
        self.rules = rules if rules is not None else default_rules(self.config)
        self._history = EventHistory(store, clock)

    async def detect(self, event: AuditEvent) -> list[ThreatFinding]:
        """Run every rule once against an event."""
        findings: list[ThreatFinding] = []
        for rule in self.rules:
            try:
                finding = await rule.evaluate(event, self._history)
            except DetectionError as e:
                logger.warning(f"Skipping rule for {event.id}: {e}")
                continue
            except StorageError as e:
                logger.warning(f"Rule '{rule.name}' history lookup failed for {event.id}: {e}")
                continue
            if finding is not None:
                findings.append(finding)

        if findings:
            logger.debug(f"Event {event.id} matched {[f.type for f in findings]}")
        return findings

    async def assess(self, event: AuditEvent) -> tuple[list[ThreatFinding], SecurityContext]:
        """Findings plus the security context summarizing them."""
        findings = await self.detect(event)
        return findings, SecurityContext.from_findings(findings)
