"""PaperTracker - reading time, ratings and notes for research papers.

Recognizes paper pages from configurable URL patterns, measures how
long each paper is actually read, and keeps one deduplicated record per
paper with an append-only history of ratings, notes and sessions.
"""

__version__ = "1.0.0"

from papertracker.config import Settings
from papertracker.context import TrackerContext
from papertracker.models.paper import PaperMetadata, Rating
from papertracker.models.source import SourcePattern

__all__ = ["PaperMetadata", "Rating", "Settings", "SourcePattern", "TrackerContext", "__version__"]
