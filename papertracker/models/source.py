"""Source pattern data models."""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class SourcePattern:
    """A paper source described by two regular expressions.

    ``url_pattern`` decides whether a URL belongs to the source and
    ``id_regex`` extracts the paper id from it.  Instances are immutable;
    replacing a pattern means registering a new value under the same id.
    """

    id: str
    name: str
    url_pattern: str
    id_regex: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourcePattern":
        """Build a pattern from a config mapping.

        Accepts both ``url_pattern``/``id_regex`` and the camelCase
        ``urlPattern``/``idRegex`` keys used by exported browser settings.
        Missing keys become empty strings and are rejected later by
        the registry's validation.
        """
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            url_pattern=str(data.get("url_pattern") or data.get("urlPattern") or ""),
            id_regex=str(data.get("id_regex") or data.get("idRegex") or ""),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "url_pattern": self.url_pattern,
            "id_regex": self.id_regex,
        }


@dataclass(frozen=True)
class ResolvedSource:
    """Result of identifying a URL: which source, which paper."""

    source_id: str
    paper_id: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_id, self.paper_id)


def optional_pattern(data: Any) -> Optional[SourcePattern]:
    """Return a :class:`SourcePattern` for *data* if it is a mapping."""
    if isinstance(data, SourcePattern):
        return data
    if isinstance(data, dict):
        return SourcePattern.from_dict(data)
    return None
