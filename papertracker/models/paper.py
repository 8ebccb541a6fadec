"""Paper metadata, annotation and stored-record models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from papertracker.errors import ValidationError

READING_SESSION_EVENT = "reading_session"


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class Rating(str, Enum):
    """User verdict on a paper."""

    NONE = "novote"
    THUMBS_UP = "thumbsup"
    THUMBS_DOWN = "thumbsdown"

    @classmethod
    def parse(cls, value: Any) -> "Rating":
        """Parse a rating from its value or one of the accepted aliases.

        Raises:
            ValidationError: If *value* is not a known rating
        """
        if isinstance(value, Rating):
            return value
        text = str(value or "").strip().lower()
        aliases = {
            "": cls.NONE,
            "none": cls.NONE,
            "novote": cls.NONE,
            "up": cls.THUMBS_UP,
            "thumbs-up": cls.THUMBS_UP,
            "thumbsup": cls.THUMBS_UP,
            "down": cls.THUMBS_DOWN,
            "thumbs-down": cls.THUMBS_DOWN,
            "thumbsdown": cls.THUMBS_DOWN,
        }
        if text not in aliases:
            raise ValidationError(f"Unknown rating: {value!r}")
        return aliases[text]


class AnnotationKind(str, Enum):
    RATING = "rating"
    NOTES = "notes"
    CUSTOM = "custom"


@dataclass
class PaperMetadata:
    """Descriptive metadata for one paper, keyed by ``(source_id, paper_id)``."""

    source_id: str
    paper_id: str
    title: str = ""
    authors: str = ""
    url: str = ""
    abstract: str = ""
    published_date: str = ""
    tags: set[str] = field(default_factory=set)
    rating: Rating = Rating.NONE
    notes: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_id, self.paper_id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict (tags sorted, rating as value)."""
        return {
            "source_id": self.source_id,
            "paper_id": self.paper_id,
            "title": self.title,
            "authors": self.authors,
            "url": self.url,
            "abstract": self.abstract,
            "published_date": self.published_date,
            "tags": sorted(self.tags),
            "rating": self.rating.value,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaperMetadata":
        """Build metadata from a dict, accepting camelCase keys as well.

        Raises:
            ValidationError: If the source or paper id is missing
        """
        source_id = data.get("source_id") or data.get("sourceId")
        paper_id = data.get("paper_id") or data.get("paperId")
        if not source_id or not paper_id:
            raise ValidationError("Paper metadata requires source_id and paper_id")

        authors = data.get("authors") or ""
        if isinstance(authors, (list, tuple)):
            authors = ", ".join(str(a) for a in authors if a)

        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [t.strip() for t in tags.split(",")]

        now = utc_now_iso()
        return cls(
            source_id=str(source_id),
            paper_id=str(paper_id),
            title=str(data.get("title") or ""),
            authors=str(authors),
            url=str(data.get("url") or ""),
            abstract=str(data.get("abstract") or ""),
            published_date=str(data.get("published_date") or data.get("publishedDate") or ""),
            tags={str(t) for t in tags if t},
            rating=Rating.parse(data.get("rating")),
            notes=data.get("notes"),
            created_at=str(data.get("created_at") or data.get("createdAt") or now),
            updated_at=str(data.get("updated_at") or data.get("updatedAt") or now),
        )


@dataclass(frozen=True)
class Annotation:
    """One append-only event attached to a stored paper."""

    kind: AnnotationKind
    value: Any
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "value": self.value, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Annotation":
        return cls(
            kind=AnnotationKind(data.get("kind", AnnotationKind.CUSTOM.value)),
            value=data.get("value"),
            timestamp=str(data.get("timestamp") or ""),
        )


@dataclass
class StoredPaper:
    """The durable view of a paper: its metadata plus annotation history.

    ``metadata.rating`` and ``metadata.notes`` reflect the latest
    rating/notes annotation; the full history stays in ``annotations``.
    """

    key: str
    metadata: PaperMetadata
    annotations: list[Annotation] = field(default_factory=list)

    def latest(self, kind: AnnotationKind) -> Optional[Annotation]:
        """Return the most recent annotation of *kind*, or None."""
        for annotation in reversed(self.annotations):
            if annotation.kind == kind:
                return annotation
        return None

    def reading_sessions(self) -> list[dict[str, Any]]:
        """Reading-session events recorded for this paper, oldest first."""
        return [
            a.value
            for a in self.annotations
            if a.kind == AnnotationKind.CUSTOM
            and isinstance(a.value, dict)
            and a.value.get("event") == READING_SESSION_EVENT
        ]

    def total_reading_ms(self) -> float:
        return sum(float(s.get("duration_ms", 0)) for s in self.reading_sessions())

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "metadata": self.metadata.to_dict(),
            "annotations": [a.to_dict() for a in self.annotations],
        }
