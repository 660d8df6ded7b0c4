import html
import re

from markdown import Markdown

from server.src.modules.wiki_config import MARKUP_KINDS, get_wiki_settings
from server.src.modules.wiki_errors import ValidationError


_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


def md2html(string):
    return Markdown(extensions=["extra", "sane_lists"]).convert(string or "")


def text2html(string):
    paragraphs = [chunk.strip() for chunk in _PARAGRAPH_SPLIT_RE.split(string or "") if chunk.strip()]
    return "\n".join(
        "<p>%s</p>" % html.escape(chunk).replace("\n", "<br />\n") for chunk in paragraphs
    )


markupKindToFunc = {
    "markdown": md2html,
    "text": text2html,
}


def normalize_markup(value) -> str:
    raw = str(value or "").strip().lower()
    if not raw:
        return get_wiki_settings().default_markup
    if raw not in MARKUP_KINDS:
        raise ValidationError(f"Unsupported markup kind: {raw}")
    return raw


def to_html(content, markup):
    return markupKindToFunc[normalize_markup(markup)](content)
