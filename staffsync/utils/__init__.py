"""Utility modules"""
from .logger import get_logger, setup_logging
from .idgen import generate_correlation_id, derive_canonical_key
from .time import utc_now, format_iso, parse_iso, period_id_for, period_bounds

__all__ = [
    "get_logger",
    "setup_logging",
    "generate_correlation_id",
    "derive_canonical_key",
    "utc_now",
    "format_iso",
    "parse_iso",
    "period_id_for",
    "period_bounds",
]
