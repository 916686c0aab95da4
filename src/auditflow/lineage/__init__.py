"""Data lineage tracking for audit events."""

from auditflow.lineage.tracker import LINEAGE_COLLECTION, LINEAGE_RULES, LineageTracker

__all__ = ["LINEAGE_COLLECTION", "LINEAGE_RULES", "LineageTracker"]
