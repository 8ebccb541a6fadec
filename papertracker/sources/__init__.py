"""Source identification."""

from papertracker.sources.identifier import SourceIdentifier
from papertracker.sources.registry import PatternRegistry, SourceIntegration, validate_patterns

__all__ = ["PatternRegistry", "SourceIdentifier", "SourceIntegration", "validate_patterns"]
