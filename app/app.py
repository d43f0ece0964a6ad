"""
UI layer
Purpose: Streamlit-only glue. Renders the workflow stages (brand, topic, delivery
snapshot, article, podcast) and the session archive, and delegates all work to the
controller. Persistence, normalization and archive sync live in contentos/ so they
can be unit tested without Streamlit.
"""

import streamlit as st
from typing import Optional

from contentos.config import configure_logging, load_config
from contentos.controller import WorkflowSessionController
from contentos.models import SECTION_DEFINITIONS, BrandProfile, ChatRole
from contentos.persistence.kv_store import JsonFileStore
from contentos.persistence.version_guard import GuardOutcome, VersionGuard
from contentos.services.security import is_html_empty
from contentos.services.webhooks import WebhookClient, WebhookError


# ---------------------------
# Page config
# ---------------------------
st.set_page_config(
    page_title="ContentOS",
    page_icon="🗂️",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ---------------------------
# UI constants
# ---------------------------
ARCHETYPES = [
    "",
    "Sage",
    "Hero",
    "Creator",
    "Caregiver",
    "Explorer",
    "Rebel",
    "Magician",
    "Ruler",
    "Jester",
    "Lover",
    "Everyman",
    "Innocent",
]
CONTENT_TYPES = ["Article", "Podcast", "Shorts", "Polls", "Carousel", "Newsletter"]

# ---------------------------
# Boot: config, version guard, controller
# ---------------------------
st_session = st.session_state
config = load_config()
configure_logging(config.log_level)


def reload_app():
    """Drop everything held in memory and render again from the store."""
    for key in list(st_session.keys()):
        del st_session[key]
    # The guard only reloads after an upgrade; the rerun sees an unchanged build.
    st_session.guard_outcome = GuardOutcome.UPGRADED.value
    st.rerun()


if "controller" not in st_session:
    store = JsonFileStore(config.store_path)
    outcome = VersionGuard(store, config.app_version, reload=reload_app).run()
    webhooks = WebhookClient(config.webhooks, timeout=config.request_timeout)
    st_session.controller = WorkflowSessionController(store, config, webhooks=webhooks)
    st_session.setdefault("guard_outcome", outcome.value)

st_session.setdefault("pending_force_brand", False)
st_session.setdefault("reorder_source", None)


# ---------------------------
# Helpers
# ---------------------------
def get_controller() -> WorkflowSessionController:
    """Return the controller object."""
    return st_session.controller


WIDGET_KEY_PREFIXES = ("brand_", "section_", "content_types")


def clear_widget_state():
    """Keyed widgets keep their last value; drop them so restored data shows."""
    for key in list(st_session.keys()):
        if str(key).startswith(WIDGET_KEY_PREFIXES):
            del st_session[key]
    st_session.reorder_source = None
    st_session.pending_force_brand = False


def on_new_session():
    """Archive the current work and begin a fresh session."""
    get_controller().begin_fresh_session()
    clear_widget_state()
    st.toast("New session started. The previous one is in the archive.")


def on_reset_all():
    """Wipe session data and settings; the archive stays."""
    get_controller().reset_session(keep_settings=False)
    clear_widget_state()
    st.toast("Session and settings reset.")


def on_restore(entry_id: str):
    if get_controller().restore_archive(entry_id):
        clear_widget_state()
        st.toast("Archived session restored.")
    else:
        st.toast("That archive entry no longer exists.", icon="⚠️")


def on_delete(entry_id: str):
    get_controller().delete_archive(entry_id)


def brand_from_inputs() -> BrandProfile:
    return BrandProfile(
        archetype=st_session.get("brand_archetype", ""),
        tone=st_session.get("brand_tone", ""),
        audience=st_session.get("brand_audience", ""),
        values=st_session.get("brand_values", ""),
        phrases=st_session.get("brand_phrases", ""),
        style=st_session.get("brand_style", ""),
    )


def save_settings(force: bool = False):
    controller = get_controller()
    try:
        changed = controller.save_settings(
            brand_from_inputs(), st_session.get("content_types", []), force=force
        )
    except ValueError as e:
        st.warning(str(e))
        return
    except WebhookError as e:
        st.error(f"{e} Save locally anyway?")
        st_session.pending_force_brand = True
        return
    st_session.pending_force_brand = False
    st.toast("Settings saved." if changed else "Nothing changed.")


def format_timestamp(value: Optional[str]) -> str:
    if not value:
        return "—"
    return value.replace("T", " ")[:16]


# ---------------------------
# SIDEBAR: session & archive
# ---------------------------
controller = get_controller()
controller.ensure_session_id()

with st.sidebar:
    st.markdown("# ContentOS")
    st.caption(f"Version {config.display_version}")
    if st_session.get("guard_outcome") == GuardOutcome.UPGRADED.value:
        st.info("A new version was installed. Session data was reset; your brand settings were kept.")
        st_session.guard_outcome = GuardOutcome.UNCHANGED.value

    session = controller.session.get()
    st.markdown("## Session")
    st.caption(f"Started {format_timestamp(session.started_at)}")
    st.button("New session", type="primary", on_click=on_new_session)
    st.button("Reset session & settings", type="secondary", on_click=on_reset_all)
    st.divider()

    st.markdown("## Archive")
    entries = controller.archive.entries()
    if not entries:
        st.caption("Sessions with a topic are archived when you start a new one.")
    for entry in entries:
        active = entry.id == controller.active_archive_id
        label = f"{'▶ ' if active else ''}{entry.title or 'Untitled topic'}"
        with st.expander(label):
            st.caption(f"Saved {format_timestamp(entry.saved_at)}")
            col1, col2 = st.columns(2)
            with col1:
                st.button(
                    "Restore",
                    key=f"restore_{entry.id}",
                    on_click=on_restore,
                    args=(entry.id,),
                    disabled=active,
                )
            with col2:
                st.button(
                    "Delete",
                    key=f"delete_{entry.id}",
                    on_click=on_delete,
                    args=(entry.id,),
                )

# ---------------------------
# Header
# ---------------------------
st.title("ContentOS")
topics = controller.topics.get()
if topics:
    st.caption(f" · Topic: **{topics[0].name}**")

# ---------------------------
# Main tabs
# ---------------------------
(
    brand_tab,
    topic_tab,
    snapshot_tab,
    article_tab,
    podcast_tab,
) = st.tabs(["Brand", "Topic", "Delivery Snapshot", "Article", "Podcast"])

with brand_tab:
    st.subheader("Brand voice")
    brand = controller.brand.get()
    locked = controller.locks.get().brand
    if locked:
        st.success("Brand voice saved.")
        if brand.summary():
            st.caption(brand.summary())

    archetype_index = ARCHETYPES.index(brand.archetype) if brand.archetype in ARCHETYPES else 0
    st.selectbox("Archetype", ARCHETYPES, index=archetype_index, key="brand_archetype")
    st.text_input("Tone", value=brand.tone, key="brand_tone")
    st.text_input("Audience", value=brand.audience, key="brand_audience")
    st.text_area("Values", value=brand.values, key="brand_values", height=80)
    st.text_area("Signature phrases", value=brand.phrases, key="brand_phrases", height=80)
    st.text_input("Style", value=brand.style, key="brand_style")
    st.multiselect(
        "Content types",
        CONTENT_TYPES,
        default=[t for t in controller.content_preferences.get() if t in CONTENT_TYPES],
        key="content_types",
    )

    if st.button("Save settings", type="primary"):
        save_settings()
    if st_session.pending_force_brand and st.button("Save locally anyway"):
        save_settings(force=True)

with topic_tab:
    st.subheader("Topic")
    current = topics[0] if topics else None
    name = st.text_input("Topic name", value=current.name if current else "")
    context = st.text_area("Context", value=current.context if current else "", height=120)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Save & continue", type="primary"):
            try:
                if current:
                    controller.update_topic(current.id, name, context)
                else:
                    controller.add_topic(name, context)
                with st.spinner("Sending topic…"):
                    if not controller.continue_topics():
                        st.toast("Topic saved, but the automation service did not answer.", icon="⚠️")
                clear_widget_state()
                st.rerun()
            except ValueError as e:
                st.warning(str(e))
    with col2:
        if current and st.button("Remove topic"):
            controller.remove_topic(current.id)
            st.rerun()

with snapshot_tab:
    st.subheader("Delivery snapshot")
    snapshot = controller.snapshot

    for section in snapshot.sections:
        definition = next(d for d in SECTION_DEFINITIONS if d.id.value == section.id)
        with st.container(border=True):
            head, move = st.columns([5, 1])
            with head:
                st.markdown(f"**{definition.title}**")
                st.caption(definition.helper)
            with move:
                source = st_session.reorder_source
                if source is None:
                    if st.button("Move", key=f"move_{section.id}"):
                        st_session.reorder_source = section.id
                        st.rerun()
                elif source == section.id:
                    if st.button("Cancel", key=f"cancel_{section.id}"):
                        st_session.reorder_source = None
                        st.rerun()
                elif st.button("Drop here", key=f"drop_{section.id}"):
                    controller.reorder_sections(source, section.id)
                    st_session.reorder_source = None
                    st.rerun()
            content = st.text_area(
                definition.title,
                value=section.content,
                placeholder=definition.placeholder,
                max_chars=definition.max_chars,
                key=f"section_{section.id}",
                label_visibility="collapsed",
            )
            if content != section.content:
                controller.update_section(section.id, content)

    if snapshot.text:
        with st.expander("Preview"):
            st.html(snapshot.text)

    st.divider()
    st.markdown("### AI draft")
    if st.button("Generate draft"):
        with st.spinner("Asking the automation service…"):
            try:
                controller.request_snapshot()
                st.rerun()
            except WebhookError as e:
                st.error(str(e))
    if not is_html_empty(controller.snapshot.ai_draft):
        st.html(controller.snapshot.ai_draft)

    st.markdown("### Request changes")
    transcript = st.container(height=320, border=True)
    with transcript:
        for msg in controller.chat.get():
            role = "assistant" if msg.role != ChatRole.USER else "user"
            with st.chat_message(role):
                st.markdown(msg.text)
    raw = st.chat_input("Describe the change you want…")
    if raw is not None:
        try:
            with st.spinner("Sending…"):
                controller.send_snapshot_chat(raw)
        except ValueError as e:
            st.toast(str(e), icon="⚠️")
        st.rerun()

with article_tab:
    st.subheader("Article")
    article = controller.article.get()
    content = st.text_area("Article", value=article.content, height=360)
    if article.saved_at:
        st.caption(f"Last saved {format_timestamp(article.saved_at)}")
    if st.button("Save article", type="primary"):
        controller.save_article(content)
        st.toast("Article saved.")
    if st.button("Generate my article"):
        try:
            controller.request_article()
            st.success("Requested article generation.")
        except WebhookError as e:
            st.error(str(e))

    st.markdown("### Send changes to n8n")
    url = st.text_input("n8n webhook URL", value=controller.n8n.get().webhook)
    if url != controller.n8n.get().webhook:
        controller.set_webhook_url(url)
    changes = st.text_area("Changes", height=120)
    if st.button("Send changes"):
        try:
            controller.send_article_change(changes)
            st.success("Sent to n8n.")
        except ValueError as e:
            st.warning(str(e))
        except WebhookError as e:
            st.error(str(e))

with podcast_tab:
    st.subheader("Podcast")
    podcast = controller.podcast.get()
    title = st.text_input("Episode title", value=podcast.title)
    outline = st.text_area("Outline", value=podcast.outline, height=240)
    if st.button("Save podcast", type="primary"):
        controller.save_podcast(title, outline)
        st.toast("Podcast saved.")
