"""
Purpose: The single orchestration point for a workflow session. Owns the persisted
cells, the session lifecycle and the archive designation.
It centralizes session lifecycle (start, ensure, reset, restore) and keeps the UI
from knowing how persistence, normalization or the automation service work.

Key responsibilities:
- Build every persisted cell (after the version guard has run at boot).
- Decide which keys survive a new session (settings) and which do not.
- Archive the current session before starting a new one; keep a restored
  session syncing into its own archive entry.
- Route every snapshot write through the normalizer.
- Call the automation service for brand saves, snapshot drafts and chat.

Testing: Pure unit tests with InMemoryStore, a fixed clock/id factory and fake
notifier/poster objects.
"""

from __future__ import annotations
import copy
import json
import logging
import uuid
from dataclasses import replace
from typing import Any, Callable, Optional, Union

from .config import AppConfig
from .interfaces import KeyValueStore, SessionNotifier, WebhookPoster
from .models import (
    Article,
    ArchiveEntry,
    BrandProfile,
    ChatMessage,
    ChatRole,
    Locks,
    Podcast,
    RefData,
    Session,
    SessionBundle,
    Snapshot,
    Topic,
    WebhookConfig,
    archive_entries_from,
    chat_messages_from,
    default_social,
    iso_timestamp,
    preferences_changed,
    preferences_from,
    social_from,
    topics_from,
)
from .persistence import keys
from .persistence.cells import Codec, PersistedCell, create_cell, model_codec, model_list_codec
from .services import snapshot as snapshot_ops
from .services.archive import ArchiveSyncGuard, ArchiveSynchronizer
from .services.security import DefaultSecurity, ensure_html_content
from .services.webhooks import WebhookError

logger = logging.getLogger("ContentOS.Session")

CHAT_FAILURE_TEXT = "Sorry, we couldn't send your request. Please try again."
STORAGE_DUMP_KEYS = (
    keys.BRAND_KEY,
    keys.TOPICS_KEY,
    keys.SNAPSHOT_KEY,
    keys.ARTICLE_KEY,
    keys.SOCIAL_KEY,
    keys.WEBHOOK_CONFIG_KEY,
)


class WorkflowSessionController:
    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[AppConfig] = None,
        *,
        webhooks: Optional[WebhookPoster] = None,
        notifier: Optional[SessionNotifier] = None,
        clock: Optional[Callable[[], str]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.store = store
        self.config = config or AppConfig()
        self.webhooks = webhooks
        if notifier is None and hasattr(webhooks, "session_started"):
            notifier = webhooks
        self.notifier = notifier
        self.clock = clock or iso_timestamp
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.normalizer = snapshot_ops.SnapshotNormalizer(sanitize=self.config.sanitize_html)
        self.security = DefaultSecurity()

        finalize = self.normalizer.finalize

        # session-scoped
        self.session = create_cell(store, keys.SESSION_KEY, Session, model_codec(Session.from_dict))
        self.locks = create_cell(store, keys.LOCKS_KEY, Locks, model_codec(Locks.from_dict))
        self.refdata = create_cell(store, keys.REFDATA_KEY, RefData, model_codec(RefData.from_dict))
        self.topics = create_cell(store, keys.TOPICS_KEY, list, model_list_codec(topics_from))
        self.snapshot_cell = create_cell(
            store, keys.SNAPSHOT_KEY, lambda: finalize(None), model_codec(finalize)
        )
        self.chat = create_cell(
            store, keys.SNAPSHOT_CHAT_KEY, list, model_list_codec(chat_messages_from)
        )
        self.article = create_cell(store, keys.ARTICLE_KEY, Article, model_codec(Article.from_dict))
        self.podcast = create_cell(store, keys.PODCAST_KEY, Podcast, model_codec(Podcast.from_dict))
        self.social = create_cell(
            store, keys.SOCIAL_KEY, default_social, Codec(encode=dict, decode=social_from)
        )
        self.n8n = create_cell(
            store, keys.WEBHOOK_CONFIG_KEY, WebhookConfig, model_codec(WebhookConfig.from_dict)
        )
        self.archives = create_cell(
            store,
            keys.ARCHIVE_KEY,
            list,
            model_list_codec(lambda data: archive_entries_from(data, finalize=finalize)),
        )

        # settings-scoped
        self.brand = create_cell(
            store, keys.BRAND_KEY, BrandProfile, model_codec(BrandProfile.from_dict)
        )
        self.content_preferences = create_cell(
            store,
            keys.CONTENT_PREFERENCES_KEY,
            list,
            Codec(encode=list, decode=preferences_from),
        )

        self.archive = ArchiveSynchronizer(
            self.archives, clock=self.clock, id_factory=self.id_factory
        )
        self.sync_guard = ArchiveSyncGuard(self.archive)
        self.active_archive_id: Optional[str] = None
        self._applying = False

        for cell in self._bundle_cells():
            cell.subscribe(self._on_bundle_change)

    # ---------------------------
    # cells
    # ---------------------------
    def _bundle_cells(self) -> list[PersistedCell]:
        return [
            self.brand,
            self.content_preferences,
            self.topics,
            self.snapshot_cell,
            self.chat,
            self.article,
            self.podcast,
            self.social,
            self.refdata,
            self.n8n,
            self.locks,
        ]

    def _session_cells(self) -> list[PersistedCell]:
        return [
            self.session,
            self.locks,
            self.refdata,
            self.topics,
            self.snapshot_cell,
            self.chat,
            self.article,
            self.podcast,
            self.social,
            self.n8n,
        ]

    def current_bundle(self) -> SessionBundle:
        """Deep copy of the live state; archive entries never alias cell values."""
        return copy.deepcopy(
            SessionBundle(
                brand=self.brand.get(),
                content_preferences=self.content_preferences.get(),
                topics=self.topics.get(),
                snapshot=self.snapshot_cell.get(),
                snapshot_chat_messages=self.chat.get(),
                article=self.article.get(),
                podcast=self.podcast.get(),
                social=self.social.get(),
                refdata=self.refdata.get(),
                n8n=self.n8n.get(),
                locks=self.locks.get(),
            )
        )

    def _apply_bundle(self, bundle: SessionBundle) -> None:
        bundle = copy.deepcopy(bundle)
        self.brand.set(bundle.brand)
        self.content_preferences.set(bundle.content_preferences)
        self.topics.set(bundle.topics[:1])
        self.snapshot_cell.set(self.normalizer.finalize(bundle.snapshot))
        self.chat.set(bundle.snapshot_chat_messages)
        self.article.set(bundle.article)
        self.podcast.set(bundle.podcast)
        self.social.set(bundle.social)
        self.refdata.set(bundle.refdata)
        self.n8n.set(bundle.n8n)
        self.locks.set(bundle.locks)

    def _on_bundle_change(self, _value: Any) -> None:
        if self._applying:
            return
        self.sync_active_archive()

    # ---------------------------
    # session lifecycle
    # ---------------------------
    @property
    def session_id(self) -> str:
        return self.session.get().id

    def archive_current_session(self) -> Optional[ArchiveEntry]:
        """Upsert the live bundle under the current session id (no-op without one)."""
        session = self.session.get()
        return self.archive.upsert(
            self.current_bundle(),
            session_id=session.id,
            started_at=session.started_at,
        )

    def start_new_session(self) -> str:
        """Archive the current work, then begin a fresh session. Returns its id."""
        self.archive_current_session()
        self.clear_active_archive()

        session = Session(id=self.id_factory(), started_at=self.clock())
        self.session.set(session)
        self.locks.set(lambda locks: replace(locks, brand=False))
        logger.info("Started session %s", session.id)

        self._notify_session_started(session)
        return session.id

    def _notify_session_started(self, session: Session) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.session_started(session.id, session.started_at)
        except Exception as e:
            logger.error("Session start notification failed: %s", e)

    def ensure_session_id(self) -> str:
        """The only place a session is created implicitly."""
        return self.session_id or self.start_new_session()

    def begin_fresh_session(self) -> str:
        """The "New session" action: archive, wipe session state, start over."""
        self.archive_current_session()
        self.reset_session(keep_settings=True)
        return self.start_new_session()

    def reset_session(self, *, keep_settings: bool = True) -> None:
        """Wipe session-scoped state (memory and store). The archive is kept."""
        self._applying = True
        try:
            for key in keys.session_reset_keys(self.store.list_keys(keys.KEY_PREFIX)):
                self.store.remove(key)
            for cell in self._session_cells():
                cell.reset()
        finally:
            self._applying = False
        self.clear_active_archive()
        if not keep_settings:
            self.reset_settings()
        logger.info("Session state reset (keep_settings=%s)", keep_settings)

    def reset_settings(self) -> None:
        """Brand voice and content preferences back to defaults."""
        self.brand.reset()
        self.content_preferences.reset()
        self.locks.set(lambda locks: replace(locks, brand=False))

    # ---------------------------
    # archive
    # ---------------------------
    def clear_active_archive(self) -> None:
        self.active_archive_id = None
        self.sync_guard.clear()

    def restore_archive(self, entry_id: str) -> bool:
        """Replace the live session with an archived one; the live one is archived first."""
        if not self.archive.exists(entry_id):
            logger.warning("Archive entry %s not found", entry_id)
            return False
        self.archive_current_session()
        restored = self.archive.restore(entry_id)

        self.clear_active_archive()
        self._applying = True
        try:
            self.session.set(restored.session)
            self._apply_bundle(restored.bundle)
        finally:
            self._applying = False

        self.active_archive_id = entry_id
        self.sync_guard.seed(self.current_bundle())
        logger.info("Restored archive entry %s (session %s)", entry_id, restored.session.id)
        return True

    def delete_archive(self, entry_id: str) -> bool:
        deleted = self.archive.delete(entry_id)
        if self.active_archive_id == entry_id:
            self.clear_active_archive()
        return deleted

    def sync_active_archive(self) -> bool:
        """Push live state into the active archive entry if it changed. True if pushed."""
        entry_id = self.active_archive_id
        if not entry_id or not self.archive.exists(entry_id):
            return False
        return self.sync_guard.sync(
            self.current_bundle(), entry_id=entry_id, session=self.session.get()
        )

    # ---------------------------
    # topics
    # ---------------------------
    def add_topic(self, name: str, context: str = "") -> Topic:
        name = (name or "").strip()
        if not name:
            raise ValueError("Please enter a topic name.")
        if self.topics.get():
            raise ValueError("Only one topic is allowed. Edit or remove the current topic first.")
        topic = Topic(id=self.id_factory(), name=name, context=(context or "").strip())
        self.topics.set([topic])
        return topic

    def update_topic(self, topic_id: str, name: str, context: str = "") -> Topic:
        name = (name or "").strip()
        if not name:
            raise ValueError("Please enter a topic name.")
        current = self.topics.get()
        if not any(t.id == topic_id for t in current):
            raise ValueError(f"Unknown topic: {topic_id}")
        updated = Topic(id=topic_id, name=name, context=(context or "").strip())
        self.topics.set([updated if t.id == topic_id else t for t in current])
        return updated

    def remove_topic(self, topic_id: str) -> bool:
        current = self.topics.get()
        remaining = [t for t in current if t.id != topic_id]
        if len(remaining) == len(current):
            return False
        self.topics.set(remaining)
        return True

    # ---------------------------
    # snapshot
    # ---------------------------
    @property
    def snapshot(self) -> Snapshot:
        return self.snapshot_cell.get()

    def set_snapshot(self, value: Union[Any, Callable[[Snapshot], Any]]) -> Snapshot:
        """Every write is finalized, before the updater sees it and after."""
        finalize = self.normalizer.finalize

        def _apply(previous: Snapshot) -> Snapshot:
            base = finalize(previous)
            return finalize(value(base) if callable(value) else value)

        return self.snapshot_cell.set(_apply)

    def update_section(self, section_id: str, content: str) -> Snapshot:
        return self.set_snapshot(
            lambda snap: snapshot_ops.update_section(snap, section_id, content)
        )

    def reorder_sections(self, source_id: str, target_id: str) -> Snapshot:
        return self.set_snapshot(
            lambda snap: snapshot_ops.reorder_sections(snap, source_id, target_id)
        )

    def apply_ai_draft(self, raw_body: str) -> Snapshot:
        """Store a service response as the AI draft (JSON or text body)."""
        extracted = snapshot_ops.extract_snapshot_text(raw_body or "").strip()
        draft = ensure_html_content(extracted) if extracted else ""
        return self.set_snapshot(lambda snap: replace(snap, ai_draft=draft))

    def apply_delivery_update(self, payload: Any) -> Snapshot:
        return self.set_snapshot(
            snapshot_ops.snapshot_from_delivery_update(
                payload, base=self.snapshot, normalizer=self.normalizer
            )
        )

    # ---------------------------
    # settings
    # ---------------------------
    def save_settings(
        self, brand: BrandProfile, preferences: list[str], *, force: bool = False
    ) -> bool:
        """Apply changed settings. Returns False when nothing changed."""
        brand_changed = brand.changed_from(self.brand.get())
        prefs_changed = preferences_changed(self.content_preferences.get(), preferences)
        if not brand_changed and not prefs_changed:
            return False
        if brand_changed:
            self.save_brand(brand, force=force)
        if prefs_changed:
            self.content_preferences.set(list(preferences))
        return True

    def save_brand(self, brand: BrandProfile, *, force: bool = False) -> bool:
        """
        Send the brand profile to the automation service and lock it. A failed
        send raises WebhookError unless force=True (then it is saved locally).
        Returns whether the service accepted it.
        """
        if not brand.is_complete():
            raise ValueError("Please select an archetype and set your tone to continue.")

        ok = False
        if self.webhooks is not None:
            refdata = self.refdata.get()
            payload = {
                "source": "contentos.app",
                "brand": brand.to_dict(),
                "sessionId": self.ensure_session_id(),
                "storage": self._storage_dump(brand),
                "refdataSummary": {"columns": len(refdata.headers), "rows": len(refdata.rows)},
            }
            ok = self.webhooks.post(self.config.webhooks.brand_profile, "brand_profile", payload)
        if not ok and not force:
            raise WebhookError("Could not reach the automation service to save the brand voice.")

        self.brand.set(copy.deepcopy(brand))
        self.locks.set(lambda locks: replace(locks, brand=True))
        return ok

    def _storage_dump(self, brand: BrandProfile) -> dict:
        dump: dict[str, Any] = {}
        for key in STORAGE_DUMP_KEYS:
            raw = self.store.read(key)
            if raw is None:
                continue
            try:
                dump[key] = json.loads(raw)
            except json.JSONDecodeError:
                dump[key] = raw
        dump[keys.BRAND_KEY] = brand.to_dict()
        return dump

    # ---------------------------
    # content stages
    # ---------------------------
    def save_article(self, content: str) -> Article:
        article = Article(content=content or "", saved_at=self.clock())
        self.article.set(article)
        return article

    def save_podcast(self, title: str, outline: str) -> Podcast:
        podcast = Podcast(title=title or "", outline=outline or "")
        self.podcast.set(podcast)
        return podcast

    def set_webhook_url(self, url: str) -> None:
        self.n8n.set(WebhookConfig(webhook=(url or "").strip()))

    def _require_webhooks(self) -> WebhookPoster:
        if self.webhooks is None:
            raise WebhookError("No automation service client is configured.")
        return self.webhooks

    def _context_payload(self) -> dict:
        return {
            "topics": [t.to_dict() for t in self.topics.get()],
            "brand": self.brand.get().to_dict(),
            "sessionId": self.ensure_session_id(),
        }

    def continue_topics(self) -> bool:
        """
        Report the chosen topic to the service. A reply carrying a
        deliverySnapshotUpdate pre-fills the snapshot; a failed call is logged only.
        """
        topics = self.topics.get()
        if not topics:
            raise ValueError("Please enter a topic (context optional) before continuing.")
        if self.webhooks is None:
            return False
        ok, body = self.webhooks.post_json(
            self.config.webhooks.topics_continue,
            "topics_continue_click",
            {"topics": [t.to_dict() for t in topics], "sessionId": self.ensure_session_id()},
        )
        if not ok:
            logger.warning("Topics continue webhook failed for session %s", self.session_id)
            return False
        if isinstance(body, dict) and "deliverySnapshotUpdate" in body:
            self.apply_delivery_update(body)
        return True

    def request_article(self) -> None:
        client = self._require_webhooks()
        ok = client.post(
            self.config.webhooks.article_generate,
            "article_generate_request",
            {"articleContent": self.article.get().content, **self._context_payload()},
        )
        if not ok:
            raise WebhookError("Could not reach the article webhook.")

    def request_snapshot(self) -> Snapshot:
        """Ask the service for a delivery snapshot draft and store it as aiDraft."""
        client = self._require_webhooks()
        topics = self.topics.get()
        payload = {
            "snapshotText": self.snapshot.text,
            "topic": topics[0].to_dict() if topics else None,
            **self._context_payload(),
        }
        ok, body = client.post_text(
            self.config.webhooks.snapshot_generate, "snapshot_generate_request", payload
        )
        if not ok:
            raise WebhookError("Could not reach the delivery snapshot webhook.")
        return self.apply_ai_draft(body)

    def _append_chat(self, role: ChatRole, text: str) -> ChatMessage:
        message = ChatMessage(id=self.id_factory(), role=role, text=text, timestamp=self.clock())
        self.chat.set(lambda messages: messages + [message])
        return message

    def send_snapshot_chat(self, text: str) -> Optional[ChatMessage]:
        """
        Send a change request about the snapshot. Returns the assistant reply, a
        system apology when the service failed, or None for an empty reply.
        """
        cleaned = self.security.validate_user_input(text)
        self._append_chat(ChatRole.USER, cleaned)
        history = [
            {"role": m.role.value, "text": m.text, "timestamp": m.timestamp}
            for m in self.chat.get()
        ]

        ok, reply = False, ""
        if self.webhooks is not None:
            ok, reply = self.webhooks.post_text(
                self.config.webhooks.snapshot_change,
                "snapshot_change_chat",
                {
                    "message": cleaned,
                    "history": history,
                    "snapshotText": self.snapshot.text,
                    **self._context_payload(),
                },
            )
        if not ok:
            return self._append_chat(ChatRole.SYSTEM, CHAT_FAILURE_TEXT)
        reply = (reply or "").strip()
        return self._append_chat(ChatRole.ASSISTANT, reply) if reply else None

    def send_article_change(self, changes: str) -> None:
        if not (changes or "").strip():
            raise ValueError("Please type the article changes you want to send.")
        url = self.n8n.get().webhook.strip()
        if not url:
            raise ValueError("Please set your n8n webhook URL first.")
        client = self._require_webhooks()
        ok = client.post(
            url,
            "article_change_request",
            {
                "changes": changes,
                "articleContent": self.article.get().content,
                **self._context_payload(),
            },
        )
        if not ok:
            raise WebhookError("Could not send to n8n.")
