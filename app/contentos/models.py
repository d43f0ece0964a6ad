"""
Canonical data shapes, shared truth for typing/validation between layers.

Typical contents:
- Session, BrandProfile, Topic (workflow inputs).
- SnapshotSection / Snapshot (the six-section delivery document).
- SessionBundle (everything an archive entry restores) and ArchiveEntry.

Every persisted shape has to_dict() (camelCase wire form, the same documents the
store holds) and a lenient from_dict(): missing or mistyped fields fall back to
defaults instead of raising, because stored data is never trusted.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, ClassVar, Mapping, Optional


def _str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC ISO-8601 with milliseconds and a Z suffix (2024-05-01T09:30:00.000Z)."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SectionId(str, Enum):
    PROBLEM = "problem"
    MODEL = "model"
    METAPHOR = "metaphor"
    CASE_STAT = "caseStat"
    ACTION_STEPS = "actionSteps"
    ONE_LINER = "oneLiner"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class SectionDefinition:
    id: SectionId
    title: str
    helper: str
    placeholder: str
    max_chars: int
    required: bool = True


SECTION_DEFINITIONS: tuple[SectionDefinition, ...] = (
    SectionDefinition(
        SectionId.PROBLEM,
        "Problem",
        "State the cost of inaction in one sentence.",
        'e.g., "Each launch loses 40% of warm leads before demo day."',
        280,
    ),
    SectionDefinition(
        SectionId.MODEL,
        "Model",
        "Name the framework or method you'll use to solve it.",
        'e.g., "The Launch Lift Framework rebuilds pre-demo nurture in 14 days."',
        260,
    ),
    SectionDefinition(
        SectionId.METAPHOR,
        "Metaphor",
        "Offer a vivid comparison that makes the model stick.",
        'e.g., "It\'s like upgrading from a paper map to Waze for your buyer journey."',
        180,
    ),
    SectionDefinition(
        SectionId.CASE_STAT,
        "Case / Stat",
        "Share one proof point: metric, testimonial, or mini-case.",
        'e.g., "After the shift, demos jumped 37% and close rates doubled in Q2."',
        220,
    ),
    SectionDefinition(
        SectionId.ACTION_STEPS,
        "Action Steps",
        "List 2-3 specific moves the audience can take next.",
        'e.g., "1. Audit handoff -> 2. Patch nurture gaps -> 3. Relaunch with live demo."',
        260,
    ),
    SectionDefinition(
        SectionId.ONE_LINER,
        "One-liner + Context",
        "Draft the hook and where you'll use it.",
        'e.g., "Stop losing launch leads: drop this in the first slide of your sales deck."',
        120,
    ),
)

SECTION_IDS: tuple[str, ...] = tuple(d.id.value for d in SECTION_DEFINITIONS)


def section_definition(section_id: str) -> Optional[SectionDefinition]:
    for definition in SECTION_DEFINITIONS:
        if definition.id.value == section_id:
            return definition
    return None


@dataclass
class Session:
    id: str = ""
    started_at: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "startedAt": self.started_at}

    @classmethod
    def from_dict(cls, data: Any) -> "Session":
        if not isinstance(data, Mapping):
            return cls()
        return cls(id=_str(data.get("id")), started_at=_str(data.get("startedAt")))


@dataclass
class BrandProfile:
    archetype: str = ""
    tone: str = ""
    audience: str = ""
    values: str = ""
    phrases: str = ""
    style: str = ""

    FIELDS: ClassVar[tuple[str, ...]] = (
        "archetype",
        "tone",
        "audience",
        "values",
        "phrases",
        "style",
    )

    def is_complete(self) -> bool:
        """Archetype and tone are required before the brand can be saved."""
        return bool(self.archetype.strip()) and bool(self.tone.strip())

    def changed_from(self, other: "BrandProfile") -> bool:
        return any(
            (getattr(self, name) or "") != (getattr(other, name) or "")
            for name in self.FIELDS
        )

    def summary(self) -> str:
        return " · ".join(
            f"{name.capitalize()}: {getattr(self, name)}"
            for name in self.FIELDS
            if getattr(self, name)
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "BrandProfile":
        if not isinstance(data, Mapping):
            return cls()
        return cls(**{name: _str(data.get(name)) for name in cls.FIELDS})


def preferences_from(data: Any) -> list[str]:
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, str)]


def preferences_changed(current: list[str], proposed: list[str]) -> bool:
    """Content preferences are an unordered set of tags."""
    return sorted(current) != sorted(proposed)


@dataclass
class Topic:
    id: str
    name: str = ""
    context: str = ""

    @property
    def has_name(self) -> bool:
        return bool(self.name.strip())

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "context": self.context}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Topic"]:
        if not isinstance(data, Mapping):
            return None
        return cls(
            id=_str(data.get("id")),
            name=_str(data.get("name")),
            context=_str(data.get("context")),
        )


def topics_from(data: Any) -> list[Topic]:
    """Only one topic is allowed; longer stored lists keep their first element."""
    if not isinstance(data, list):
        return []
    topics = [topic for topic in map(Topic.from_dict, data) if topic is not None]
    return topics[:1]


@dataclass
class SnapshotSection:
    id: str
    content: str = ""

    def to_dict(self) -> dict:
        return {"id": self.id, "content": self.content}


@dataclass
class Snapshot:
    sections: list[SnapshotSection] = field(default_factory=list)
    ai_draft: str = ""
    text: str = ""

    def section(self, section_id: str) -> Optional[SnapshotSection]:
        return next((s for s in self.sections if s.id == section_id), None)

    @property
    def section_ids(self) -> list[str]:
        return [s.id for s in self.sections]

    def to_dict(self) -> dict:
        return {
            "sections": [s.to_dict() for s in self.sections],
            "aiDraft": self.ai_draft,
            "text": self.text,
        }


@dataclass
class ChatMessage:
    id: str
    role: ChatRole
    text: str
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ChatMessage"]:
        if not isinstance(data, Mapping):
            return None
        try:
            role = ChatRole(data.get("role"))
        except ValueError:
            return None
        return cls(
            id=_str(data.get("id")),
            role=role,
            text=_str(data.get("text")),
            timestamp=_str(data.get("timestamp")),
        )


def chat_messages_from(data: Any) -> list[ChatMessage]:
    if not isinstance(data, list):
        return []
    return [m for m in map(ChatMessage.from_dict, data) if m is not None]


@dataclass
class Article:
    content: str = ""
    saved_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {"content": self.content, "savedAt": self.saved_at}

    @classmethod
    def from_dict(cls, data: Any) -> "Article":
        if not isinstance(data, Mapping):
            return cls()
        saved_at = data.get("savedAt")
        return cls(
            content=_str(data.get("content")),
            saved_at=saved_at if isinstance(saved_at, str) else None,
        )


@dataclass
class Podcast:
    title: str = ""
    outline: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "Podcast":
        if not isinstance(data, Mapping):
            return cls()
        return cls(title=_str(data.get("title")), outline=_str(data.get("outline")))


@dataclass
class Locks:
    brand: bool = False

    def to_dict(self) -> dict:
        return {"brand": self.brand}

    @classmethod
    def from_dict(cls, data: Any) -> "Locks":
        if not isinstance(data, Mapping):
            return cls()
        return cls(brand=data.get("brand") is True)


@dataclass
class WebhookConfig:
    webhook: str = ""

    def to_dict(self) -> dict:
        return {"webhook": self.webhook}

    @classmethod
    def from_dict(cls, data: Any) -> "WebhookConfig":
        if not isinstance(data, Mapping):
            return cls()
        return cls(webhook=_str(data.get("webhook")))


@dataclass
class RefData:
    headers: list[str] = field(default_factory=list)
    rows: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"headers": list(self.headers), "rows": list(self.rows)}

    @classmethod
    def from_dict(cls, data: Any) -> "RefData":
        if not isinstance(data, Mapping):
            return cls()
        headers = data.get("headers")
        rows = data.get("rows")
        return cls(
            headers=[h for h in headers if isinstance(h, str)]
            if isinstance(headers, list)
            else [],
            rows=list(rows) if isinstance(rows, list) else [],
        )


def default_social() -> dict:
    """Preset scaffolding for the social assets stage."""
    return {
        "shorts": [{"title": f"Short #{i + 1}", "script": ""} for i in range(10)],
        "polls": [
            {
                "question": f"Poll question #{i + 1}",
                "options": ["Option A", "Option B", "Option C", "Option D"],
            }
            for i in range(5)
        ],
        "quote": {"text": "", "author": ""},
        "carousels": [
            {
                "title": "Carousel",
                "slides": [{"heading": f"Slide {i + 1}", "body": ""} for i in range(3)],
            }
        ],
        "images": [
            {
                "caption": f"Image post #{i + 1}",
                "alt": "Describe the visual",
                "postCaption": "Share the story behind the visual",
            }
            for i in range(6)
        ],
        "newsletters": [{"subject": f"Newsletter #{i + 1}", "body": ""} for i in range(3)],
        "questions": [],
    }


def social_from(data: Any) -> dict:
    return dict(data) if isinstance(data, Mapping) else default_social()


@dataclass
class SessionBundle:
    """Everything one workflow session produced; the payload of an archive entry."""

    brand: BrandProfile = field(default_factory=BrandProfile)
    content_preferences: list[str] = field(default_factory=list)
    topics: list[Topic] = field(default_factory=list)
    snapshot: Snapshot = field(default_factory=Snapshot)
    snapshot_chat_messages: list[ChatMessage] = field(default_factory=list)
    article: Article = field(default_factory=Article)
    podcast: Podcast = field(default_factory=Podcast)
    social: dict = field(default_factory=default_social)
    refdata: RefData = field(default_factory=RefData)
    n8n: WebhookConfig = field(default_factory=WebhookConfig)
    locks: Locks = field(default_factory=Locks)

    def archive_title(self) -> Optional[str]:
        """First topic's name, or None when no topic carries a name at all."""
        if not any(topic.has_name for topic in self.topics):
            return None
        first = self.topics[0].name.strip()
        return first or "Untitled topic"

    def to_dict(self) -> dict:
        return {
            "brand": self.brand.to_dict(),
            "contentPreferences": list(self.content_preferences),
            "topics": [t.to_dict() for t in self.topics],
            "snapshot": self.snapshot.to_dict(),
            "snapshotChatMessages": [m.to_dict() for m in self.snapshot_chat_messages],
            "article": self.article.to_dict(),
            "podcast": self.podcast.to_dict(),
            "social": self.social,
            "refdata": self.refdata.to_dict(),
            "n8n": self.n8n.to_dict(),
            "locks": self.locks.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: Any,
        *,
        finalize: Optional[Callable[[Any], Snapshot]] = None,
    ) -> "SessionBundle":
        """Rebuild a bundle from untrusted data; the snapshot is always finalized."""
        if finalize is None:
            from .services.snapshot import finalize

        if not isinstance(data, Mapping):
            data = {}
        return cls(
            brand=BrandProfile.from_dict(data.get("brand")),
            content_preferences=preferences_from(data.get("contentPreferences")),
            topics=topics_from(data.get("topics")),
            snapshot=finalize(data.get("snapshot")),
            snapshot_chat_messages=chat_messages_from(data.get("snapshotChatMessages")),
            article=Article.from_dict(data.get("article")),
            podcast=Podcast.from_dict(data.get("podcast")),
            social=social_from(data.get("social")),
            refdata=RefData.from_dict(data.get("refdata")),
            n8n=WebhookConfig.from_dict(data.get("n8n")),
            locks=Locks.from_dict(data.get("locks")),
        )


@dataclass
class ArchiveEntry:
    id: str
    session_id: str
    started_at: str
    saved_at: str
    title: str
    data: SessionBundle

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "startedAt": self.started_at,
            "savedAt": self.saved_at,
            "title": self.title,
            "data": self.data.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: Any,
        *,
        finalize: Optional[Callable[[Any], Snapshot]] = None,
    ) -> Optional["ArchiveEntry"]:
        if not isinstance(data, Mapping) or not _str(data.get("id")):
            return None
        return cls(
            id=data["id"],
            session_id=_str(data.get("sessionId")),
            started_at=_str(data.get("startedAt")),
            saved_at=_str(data.get("savedAt")),
            title=_str(data.get("title")),
            data=SessionBundle.from_dict(data.get("data"), finalize=finalize),
        )


def archive_entries_from(
    data: Any, *, finalize: Optional[Callable[[Any], Snapshot]] = None
) -> list[ArchiveEntry]:
    if not isinstance(data, list):
        return []
    entries = (ArchiveEntry.from_dict(item, finalize=finalize) for item in data)
    return [entry for entry in entries if entry is not None]


@dataclass
class RestoredSession:
    session: Session
    bundle: SessionBundle
