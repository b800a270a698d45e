"""Eligibility module — rule store, aggregation and renewal."""

from backend.eligibility.aggregator import EligibilityAggregator, aggregate_rules
from backend.eligibility.models import DesignationEligibilityRule, EligibilityLedgerEntry
from backend.eligibility.renewal import RenewalService

__all__ = [
    "DesignationEligibilityRule",
    "EligibilityAggregator",
    "EligibilityLedgerEntry",
    "RenewalService",
    "aggregate_rules",
]
