"""
Purpose: Turn any stored, legacy, or service-provided snapshot document into the
canonical six-section Snapshot, and derive its rendered HTML.

Rules:
- sections always hold exactly the six canonical ids; a user's manual order is
  kept, ids missing from the input append in definition order.
- aiDraft comes from aiDraft, else legacy generatedHtml, else (only without any
  sections) legacy text; plain text is wrapped into paragraphs.
- text is recomputed from sections on every pass; a stored text is never trusted.

Everything that reads a snapshot from outside (store, archive restore, webhook
response) goes through finalize() first.
"""

from __future__ import annotations
from typing import Any, Mapping, Optional

from ..models import (
    SECTION_IDS,
    Snapshot,
    SnapshotSection,
    section_definition,
)
from ..utils.payload_json import find_first_string, parse_body
from .security import ensure_html_content, escape_html, has_markup, sanitize_html

SNAPSHOT_TEXT_KEYS = (
    "html",
    "text",
    "snapshot",
    "content",
    "body",
    "deliverySnapshot",
    "delivery_snapshot",
    "result",
    "data",
)


def empty_sections() -> list[SnapshotSection]:
    return [SnapshotSection(id=section_id) for section_id in SECTION_IDS]


def empty_snapshot() -> Snapshot:
    return Snapshot(sections=empty_sections())


def sections_to_html(sections: list[SnapshotSection]) -> str:
    blocks = []
    for section in sections:
        definition = section_definition(section.id)
        if definition is None:
            continue
        content = (section.content or "").strip()
        if not content:
            continue
        heading = escape_html(definition.title)
        blocks.append(f"<section><h3>{heading}</h3>{ensure_html_content(content)}</section>")
    return "".join(blocks)


class SnapshotNormalizer:
    """
    sanitize=True strips active content (scripts, inline handlers, javascript:
    URLs) from markup-bearing drafts and section bodies at this boundary.

    A section id listed twice keeps its first position and its first content; a
    last-write-wins merge would keep the position but take the later content.
    """

    def __init__(self, *, sanitize: bool = True) -> None:
        self.sanitize = sanitize

    def _clean(self, value: str) -> str:
        return sanitize_html(value) if self.sanitize else value

    def normalize(self, raw: Any) -> Snapshot:
        if isinstance(raw, Snapshot):
            raw = raw.to_dict()
        if not isinstance(raw, Mapping):
            return empty_snapshot()

        present: list[SnapshotSection] = []
        raw_sections = raw.get("sections")
        if isinstance(raw_sections, list):
            for item in raw_sections:
                if not isinstance(item, Mapping):
                    continue
                section_id = item.get("id")
                if not isinstance(section_id, str) or section_id not in SECTION_IDS:
                    continue
                content = item.get("content")
                present.append(
                    SnapshotSection(
                        id=section_id,
                        content=self._clean(content) if isinstance(content, str) else "",
                    )
                )

        content_by_id: dict[str, str] = {}
        order: list[str] = []
        for section in present:
            if section.id not in content_by_id:
                content_by_id[section.id] = section.content
                order.append(section.id)
        order.extend(section_id for section_id in SECTION_IDS if section_id not in content_by_id)
        sections = [SnapshotSection(id=sid, content=content_by_id.get(sid, "")) for sid in order]

        return Snapshot(
            sections=sections,
            ai_draft=self._resolve_ai_draft(raw, has_sections=bool(present)),
            text=sections_to_html(sections),
        )

    def _resolve_ai_draft(self, raw: Mapping, *, has_sections: bool) -> str:
        if isinstance(raw.get("aiDraft"), str):
            draft = raw["aiDraft"]
        elif isinstance(raw.get("generatedHtml"), str):
            draft = raw["generatedHtml"]
        elif isinstance(raw.get("text"), str) and not has_sections:
            draft = raw["text"]
        else:
            draft = ""
        if has_markup(draft):
            cleaned = self._clean(draft)
            # Sanitizing can leave escaped text only; keep it marked up so a later
            # pass does not escape it again.
            if cleaned and not has_markup(cleaned):
                return f"<p>{cleaned}</p>"
            return cleaned
        return ensure_html_content(draft)

    def finalize(self, raw: Any) -> Snapshot:
        snapshot = self.normalize(raw)
        snapshot.text = sections_to_html(snapshot.sections)
        return snapshot


_DEFAULT = SnapshotNormalizer()


def normalize(raw: Any) -> Snapshot:
    return _DEFAULT.normalize(raw)


def finalize(raw: Any) -> Snapshot:
    return _DEFAULT.finalize(raw)


def reorder_sections(snapshot: Snapshot, source_id: str, target_id: str) -> Snapshot:
    """Drag-and-drop move: take source out, insert it at target's position."""
    sections = list(snapshot.sections) or empty_sections()
    ids = [s.id for s in sections]
    if source_id == target_id or source_id not in ids or target_id not in ids:
        return snapshot
    moved = sections.pop(ids.index(source_id))
    sections.insert(ids.index(target_id), moved)
    return Snapshot(
        sections=sections, ai_draft=snapshot.ai_draft, text=sections_to_html(sections)
    )


def update_section(snapshot: Snapshot, section_id: str, content: str) -> Snapshot:
    if section_id not in SECTION_IDS:
        raise ValueError(f"Unknown snapshot section: {section_id!r}")
    sections = [
        SnapshotSection(id=s.id, content=content if s.id == section_id else s.content)
        for s in snapshot.sections
    ]
    return Snapshot(
        sections=sections, ai_draft=snapshot.ai_draft, text=sections_to_html(sections)
    )


def extract_snapshot_text(raw_body: str) -> str:
    """
    Pull the draft out of a service response. JSON bodies are searched for the
    first string (preferred keys first); anything else is returned as-is.
    """
    if not raw_body:
        return ""
    parsed = parse_body(raw_body)
    if parsed is None:
        return raw_body
    return find_first_string(parsed, SNAPSHOT_TEXT_KEYS) or raw_body


def map_delivery_update(payload: Any) -> dict[str, str]:
    """Flatten a {"deliverySnapshotUpdate": {...}} payload to one value per key."""
    update = payload.get("deliverySnapshotUpdate") if isinstance(payload, Mapping) else None
    if not isinstance(update, Mapping):
        update = {}
    sections = update.get("sections")

    by_key: dict[str, str] = {}
    for section in sections if isinstance(sections, list) else []:
        if not isinstance(section, Mapping):
            continue
        key = section.get("key")
        if not isinstance(key, str) or not key:
            continue
        content = section.get("content")
        by_key[key] = content.strip() if isinstance(content, str) else ""

    mapped = {
        "archetype": update.get("archetype") if isinstance(update.get("archetype"), str) else "",
        "topic": update.get("topic") if isinstance(update.get("topic"), str) else "",
    }
    for section_id in SECTION_IDS:
        mapped[section_id] = by_key.get(section_id, "")
    return mapped


def snapshot_from_delivery_update(
    payload: Any,
    base: Optional[Snapshot] = None,
    normalizer: Optional[SnapshotNormalizer] = None,
) -> Snapshot:
    """Apply a delivery update on top of base, keeping base's order and draft."""
    normalizer = normalizer or _DEFAULT
    mapped = map_delivery_update(payload)
    order = base.section_ids if base is not None else list(SECTION_IDS)
    return normalizer.finalize(
        {
            "sections": [{"id": sid, "content": mapped.get(sid, "")} for sid in order],
            "aiDraft": base.ai_draft if base is not None else "",
        }
    )
