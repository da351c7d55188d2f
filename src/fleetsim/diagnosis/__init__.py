"""Alert enrichment through an external reasoning service."""

from fleetsim.diagnosis.cache import DiagnosisCache, context_key
from fleetsim.diagnosis.client import (
    DiagnosisClient,
    DiagnosisUsage,
    build_context,
    enriched_record,
    merge_diagnosis,
)
from fleetsim.diagnosis.cost import RATE_TABLE, TokenRate, estimate_cost
from fleetsim.diagnosis.provider import DiagnosisProvider, OpenAIChatProvider, parse_completion
from fleetsim.diagnosis.rate_limit import SlidingWindowRateLimiter

__all__ = [
    "RATE_TABLE",
    "DiagnosisCache",
    "DiagnosisClient",
    "DiagnosisProvider",
    "DiagnosisUsage",
    "OpenAIChatProvider",
    "SlidingWindowRateLimiter",
    "TokenRate",
    "build_context",
    "context_key",
    "enriched_record",
    "estimate_cost",
    "merge_diagnosis",
    "parse_completion",
]
