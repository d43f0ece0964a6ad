"""
Purpose: Guardrails for inputs and rendered content.
Content: early, predictable failures for bad user input, and the HTML helpers the
snapshot normalizer uses: escaping plain text into paragraphs and stripping
active content (scripts, inline handlers, javascript: URLs) from markup that
arrives from the automation service or an archive restore.
"""

from __future__ import annotations
import html
import re

from bs4 import BeautifulSoup
from bs4.dammit import EntitySubstitution
from bs4.element import PreformattedString, Tag
from bs4.formatter import HTMLFormatter

HTML_TAG_PATTERN = re.compile(r"</?[a-z][\s\S]*>", re.I)

_PARAGRAPH_SPLIT = re.compile(r"\n{2,}")
_BR_RUN = re.compile(r"<br\s*/?>(\s|&nbsp;)*", re.I)
_ANY_TAG = re.compile(r"<[^>]+>")

ACTIVE_TAGS = [
    "script",
    "style",
    "iframe",
    "frame",
    "frameset",
    "object",
    "embed",
    "applet",
    "noscript",
    "template",
    "base",
    "link",
    "meta",
]
URL_ATTRIBUTES = {"href", "src", "action", "formaction", "xlink:href", "background", "poster"}
SCRIPT_SCHEMES = ("javascript:", "vbscript:", "data:text/html")

_TAG_NAME = re.compile(r"^[a-z][a-z0-9-]*$")
_ATTR_NAME = re.compile(r"^[a-z][a-z0-9:_-]*$")
_URL_NOISE = re.compile(r"[\x00-\x20]+")

# Void elements render as <br>, not <br/>; only & < > are escaped in text.
_FORMATTER = HTMLFormatter(
    entity_substitution=EntitySubstitution.substitute_xml,
    void_element_close_prefix=None,
)

MAX_CHAT_CHARS = 4000


def _is_script_url(value: str) -> bool:
    return _URL_NOISE.sub("", value).lower().startswith(SCRIPT_SCHEMES)


def _clean_attributes(tag: Tag) -> None:
    for name, value in list(tag.attrs.items()):
        if not _ATTR_NAME.match(name) or name.startswith("on"):
            del tag.attrs[name]
        elif name in URL_ATTRIBUTES and isinstance(value, str) and _is_script_url(value):
            tag.attrs[name] = "#"


def escape_html(text: str) -> str:
    """Escape & < > " ' (single quote as &#39;)."""
    return html.escape(text, quote=True).replace("&#x27;", "&#39;")


def has_markup(value: str) -> bool:
    return bool(HTML_TAG_PATTERN.search(value or ""))


def ensure_html_content(value: str) -> str:
    """
    Plain text -> paragraphs: blank lines split <p> blocks, single newlines become
    <br>, reserved characters are escaped. Markup passes through unchanged.
    """
    if not value:
        return ""
    if has_markup(value):
        return value

    escaped = escape_html(value)
    paragraphs = [b.strip() for b in _PARAGRAPH_SPLIT.split(escaped) if b.strip()]
    if not paragraphs:
        single_line = escaped.replace("\n", "<br>")
        return f"<p>{single_line}</p>" if single_line else ""

    return "".join(f"<p>{p.replace(chr(10), '<br>') or '<br>'}</p>" for p in paragraphs)


def is_html_empty(value: str) -> bool:
    """True when the markup has no visible text (only tags, <br>, &nbsp;)."""
    if not value:
        return True
    text_only = _BR_RUN.sub("", value)
    text_only = _ANY_TAG.sub("", text_only)
    return not text_only.replace("&nbsp;", " ").strip()


def sanitize_html(value: str) -> str:
    """
    Remove active content from markup. Idempotent; plain text is untouched.

    The markup is parsed once and re-serialized from the tree, so fragments left
    behind by a removed tag end up as escaped text and never form a new tag.
    Tags with malformed names are unwrapped (their text is kept).
    """
    if not value or not has_markup(value):
        return value or ""

    soup = BeautifulSoup(value, "html.parser")
    for tag in soup(ACTIVE_TAGS):
        tag.decompose()
    # Comments, doctypes, CDATA and processing instructions.
    for node in list(soup.descendants):
        if isinstance(node, PreformattedString):
            node.extract()
    for tag in soup.find_all(True):
        if _TAG_NAME.match(tag.name):
            _clean_attributes(tag)
        else:
            tag.unwrap()
    return soup.decode(formatter=_FORMATTER)


class DefaultSecurity:
    def validate_user_input(self, text: str) -> str:
        cleaned = (text or "").replace("\x00", "").strip()
        if not cleaned:
            raise ValueError("Please type a message before sending.")
        if len(cleaned) > MAX_CHAT_CHARS:
            raise ValueError("Your message is too long.")
        return cleaned
