from __future__ import annotations

import json

import pytest

from contentos.config import AppConfig
from contentos.controller import CHAT_FAILURE_TEXT, WorkflowSessionController
from contentos.models import BrandProfile, ChatRole
from contentos.persistence import keys
from contentos.services.webhooks import WebhookError

from conftest import FakeNotifier, FakePoster


def _controller(store, clock, ids, **kwargs) -> WorkflowSessionController:
    return WorkflowSessionController(store, AppConfig(), clock=clock, id_factory=ids, **kwargs)


def _with_topic(controller: WorkflowSessionController, name: str = "Launch lift") -> None:
    controller.ensure_session_id()
    controller.add_topic(name, "Q2 launches")


def test_ensure_session_id_is_idempotent(store, clock, ids, notifier) -> None:
    controller = _controller(store, clock, ids, notifier=notifier)

    first = controller.ensure_session_id()
    second = controller.ensure_session_id()

    assert first == second
    assert len(notifier.calls) == 1
    assert json.loads(store.read(keys.SESSION_KEY))["id"] == first


def test_session_survives_a_new_controller(store, clock, ids) -> None:
    session_id = _controller(store, clock, ids).ensure_session_id()
    assert _controller(store, clock, ids).ensure_session_id() == session_id


def test_notifier_failure_is_logged_not_raised(store, clock, ids) -> None:
    controller = _controller(store, clock, ids, notifier=FakeNotifier(error=RuntimeError("down")))
    assert controller.start_new_session()


def test_start_new_session_archives_current_work(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    _with_topic(controller)
    old_session = controller.session_id

    new_session = controller.start_new_session()

    assert new_session != old_session
    entries = controller.archive.entries()
    assert len(entries) == 1
    assert entries[0].session_id == old_session
    assert entries[0].title == "Launch lift"
    assert controller.locks.get().brand is False
    assert controller.active_archive_id is None


def test_start_new_session_without_topic_archives_nothing(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    controller.ensure_session_id()
    controller.start_new_session()
    assert controller.archive.entries() == []


def test_reset_session_keeps_archive_version_and_settings(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    store.write(keys.VERSION_KEY, "1.9.8")
    store.write("contentos.scratch", "1")
    controller.brand.set(BrandProfile(archetype="Sage", tone="Warm"))
    _with_topic(controller)
    controller.start_new_session()

    controller.reset_session()

    assert store.read(keys.ARCHIVE_KEY) is not None
    assert store.read(keys.VERSION_KEY) == "1.9.8"
    assert store.read(keys.BRAND_KEY) is not None
    assert store.read(keys.TOPICS_KEY) is None
    assert store.read(keys.SESSION_KEY) is None
    assert store.read("contentos.scratch") is None
    assert controller.topics.get() == []
    assert controller.session_id == ""
    assert controller.brand.get().archetype == "Sage"
    assert len(controller.archive.entries()) == 1


def test_reset_without_settings_clears_brand(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    controller.brand.set(BrandProfile(archetype="Sage", tone="Warm"))
    controller.content_preferences.set(["Article"])

    controller.reset_session(keep_settings=False)

    assert controller.brand.get() == BrandProfile()
    assert controller.content_preferences.get() == []
    assert store.read(keys.BRAND_KEY) is None
    assert store.read(keys.CONTENT_PREFERENCES_KEY) is None


def test_begin_fresh_session_archives_and_clears(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    _with_topic(controller)
    controller.update_section("problem", "Leads leak")

    controller.begin_fresh_session()

    assert controller.session_id
    assert controller.topics.get() == []
    assert controller.snapshot.section("problem").content == ""
    entries = controller.archive.entries()
    assert len(entries) == 1
    assert entries[0].data.snapshot.section("problem").content == "Leads leak"


def test_restore_applies_bundle_and_marks_entry_active(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    _with_topic(controller)
    controller.update_section("model", "Launch Lift Framework")
    archived_session = controller.session_id
    controller.begin_fresh_session()
    entry_id = controller.archive.entries()[0].id

    assert controller.restore_archive(entry_id) is True

    assert controller.active_archive_id == entry_id
    assert controller.session_id == archived_session
    assert controller.topics.get()[0].name == "Launch lift"
    assert controller.snapshot.section("model").content == "Launch Lift Framework"
    assert controller.restore_archive("missing") is False


def test_restore_causes_no_archive_write(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    _with_topic(controller)
    controller.begin_fresh_session()
    entry = controller.archive.entries()[0]

    controller.restore_archive(entry.id)

    assert controller.archive.find(entry.id).saved_at == entry.saved_at
    assert controller.sync_active_archive() is False


def test_edits_after_restore_sync_into_the_same_entry(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    _with_topic(controller)
    controller.begin_fresh_session()
    entry_id = controller.archive.entries()[0].id
    controller.restore_archive(entry_id)

    topic = controller.topics.get()[0]
    controller.update_topic(topic.id, "Renamed", topic.context)

    entries = controller.archive.entries()
    assert len(entries) == 1
    assert entries[0].id == entry_id
    assert entries[0].title == "Renamed"


def test_delete_active_archive_clears_designation(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    _with_topic(controller)
    controller.begin_fresh_session()
    entry_id = controller.archive.entries()[0].id
    controller.restore_archive(entry_id)

    assert controller.delete_archive(entry_id) is True
    assert controller.active_archive_id is None
    assert controller.delete_archive(entry_id) is False


def test_topic_rules(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    with pytest.raises(ValueError):
        controller.add_topic("   ")

    topic = controller.add_topic("  Pricing  ", " tiers ")
    assert (topic.name, topic.context) == ("Pricing", "tiers")
    with pytest.raises(ValueError):
        controller.add_topic("Another")

    assert controller.remove_topic(topic.id) is True
    assert controller.remove_topic(topic.id) is False
    assert controller.topics.get() == []


def test_snapshot_writes_are_finalized(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    controller.set_snapshot({"sections": [{"id": "oneLiner", "content": "Hook"}]})

    snapshot = controller.snapshot
    assert len(snapshot.sections) == 6
    assert snapshot.section_ids[0] == "oneLiner"
    assert "<h3>One-liner + Context</h3>" in snapshot.text

    controller.reorder_sections("problem", "oneLiner")
    assert controller.snapshot.section_ids[:2] == ["problem", "oneLiner"]
    stored = json.loads(store.read(keys.SNAPSHOT_KEY))
    assert [s["id"] for s in stored["sections"]][:2] == ["problem", "oneLiner"]


def test_apply_ai_draft_wraps_plain_text(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    controller.apply_ai_draft(json.dumps({"snapshot": "Line one\nLine two"}))
    assert controller.snapshot.ai_draft == "<p>Line one<br>Line two</p>"


def test_request_snapshot_stores_ai_draft(store, clock, ids) -> None:
    poster = FakePoster(text="<p>Draft</p>")
    controller = _controller(store, clock, ids, webhooks=poster)
    _with_topic(controller)

    controller.request_snapshot()

    assert controller.snapshot.ai_draft == "<p>Draft</p>"
    assert poster.events()[-1] == "snapshot_generate_request"
    payload = poster.calls[-1][2]
    assert payload["topic"]["name"] == "Launch lift"


def test_request_snapshot_failure_raises(store, clock, ids) -> None:
    controller = _controller(store, clock, ids, webhooks=FakePoster(ok=False))
    with pytest.raises(WebhookError):
        controller.request_snapshot()


def test_snapshot_chat_appends_reply(store, clock, ids) -> None:
    poster = FakePoster(text="Tightened the hook.")
    controller = _controller(store, clock, ids, webhooks=poster)

    reply = controller.send_snapshot_chat("  Make it punchier  ")

    assert reply.role is ChatRole.ASSISTANT
    messages = controller.chat.get()
    assert [(m.role, m.text) for m in messages] == [
        (ChatRole.USER, "Make it punchier"),
        (ChatRole.ASSISTANT, "Tightened the hook."),
    ]
    assert poster.calls[-1][1] == "snapshot_change_chat"


def test_snapshot_chat_failure_appends_apology(store, clock, ids) -> None:
    controller = _controller(store, clock, ids, webhooks=FakePoster(ok=False))
    reply = controller.send_snapshot_chat("Shorter please")
    assert reply.role is ChatRole.SYSTEM
    assert reply.text == CHAT_FAILURE_TEXT

    with pytest.raises(ValueError):
        controller.send_snapshot_chat("   ")


def test_save_brand_requires_archetype_and_tone(store, clock, ids, poster) -> None:
    controller = _controller(store, clock, ids, webhooks=poster)
    with pytest.raises(ValueError):
        controller.save_brand(BrandProfile(archetype="Sage"))
    assert poster.calls == []


def test_save_brand_posts_and_locks(store, clock, ids, poster) -> None:
    controller = _controller(store, clock, ids, webhooks=poster)
    brand = BrandProfile(archetype="Sage", tone="Calm")

    assert controller.save_brand(brand) is True

    assert controller.locks.get().brand is True
    assert controller.brand.get() == brand
    url, event, payload = poster.calls[-1]
    assert event == "brand_profile"
    assert url == controller.config.webhooks.brand_profile
    assert payload["brand"]["tone"] == "Calm"
    assert payload["sessionId"] == controller.session_id
    assert payload["storage"][keys.BRAND_KEY]["archetype"] == "Sage"


def test_save_brand_failure_needs_force(store, clock, ids) -> None:
    controller = _controller(store, clock, ids, webhooks=FakePoster(ok=False))
    brand = BrandProfile(archetype="Sage", tone="Calm")

    with pytest.raises(WebhookError):
        controller.save_brand(brand)
    assert controller.locks.get().brand is False

    assert controller.save_brand(brand, force=True) is False
    assert controller.locks.get().brand is True


def test_save_settings_detects_changes(store, clock, ids, poster) -> None:
    controller = _controller(store, clock, ids, webhooks=poster)
    brand = BrandProfile(archetype="Sage", tone="Calm")

    assert controller.save_settings(brand, ["Article", "Podcast"]) is True
    posts = len(poster.calls)
    assert controller.save_settings(brand, ["Podcast", "Article"]) is False
    assert controller.save_settings(brand, ["Podcast"]) is True
    assert len(poster.calls) == posts
    assert controller.content_preferences.get() == ["Podcast"]


def test_article_change_validation(store, clock, ids, poster) -> None:
    controller = _controller(store, clock, ids, webhooks=poster)
    with pytest.raises(ValueError):
        controller.send_article_change("")
    with pytest.raises(ValueError):
        controller.send_article_change("Shorter intro")

    controller.set_webhook_url(" http://n8n.local/hook ")
    controller.save_article("<p>Body</p>")
    controller.send_article_change("Shorter intro")

    url, event, payload = poster.calls[-1]
    assert (url, event) == ("http://n8n.local/hook", "article_change_request")
    assert payload["articleContent"] == "<p>Body</p>"


def test_state_is_reloaded_from_store(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    _with_topic(controller)
    controller.save_podcast("Ep 1", "Intro")
    controller.update_section("metaphor", "Like Waze")

    fresh = _controller(store, clock, ids)
    assert fresh.topics.get()[0].name == "Launch lift"
    assert fresh.podcast.get().title == "Ep 1"
    assert fresh.snapshot.section("metaphor").content == "Like Waze"


def test_continue_topics_prefills_snapshot(store, clock, ids) -> None:
    body = {
        "deliverySnapshotUpdate": {
            "sections": [{"key": "problem", "content": "Launch leads leak"}],
        }
    }
    poster = FakePoster(body=body)
    controller = _controller(store, clock, ids, webhooks=poster)
    with pytest.raises(ValueError):
        controller.continue_topics()

    _with_topic(controller)
    assert controller.continue_topics() is True

    url, event, payload = poster.calls[-1]
    assert event == "topics_continue_click"
    assert url == controller.config.webhooks.topics_continue
    assert payload["topics"][0]["name"] == "Launch lift"
    assert controller.snapshot.section("problem").content == "Launch leads leak"


def test_continue_topics_failure_is_not_raised(store, clock, ids) -> None:
    controller = _controller(store, clock, ids, webhooks=FakePoster(ok=False))
    _with_topic(controller)
    assert controller.continue_topics() is False
    assert controller.snapshot.section("problem").content == ""


def test_request_article(store, clock, ids, poster) -> None:
    controller = _controller(store, clock, ids, webhooks=poster)
    controller.save_article("Draft")
    controller.request_article()
    assert poster.events()[-1] == "article_generate_request"
    assert poster.calls[-1][2]["articleContent"] == "Draft"

    controller.webhooks = FakePoster(ok=False)
    with pytest.raises(WebhookError):
        controller.request_article()


def test_restore_archives_live_work_first(store, clock, ids) -> None:
    controller = _controller(store, clock, ids)
    _with_topic(controller, "First")
    controller.begin_fresh_session()
    first_entry = controller.archive.entries()[0].id
    _with_topic(controller, "Second")

    controller.restore_archive(first_entry)

    assert sorted(e.title for e in controller.archive.entries()) == ["First", "Second"]
    assert controller.topics.get()[0].name == "First"
