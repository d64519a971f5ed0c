# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Content preparation – raw field bag -> one clean text blob per item.

Pure functions only (no IO):
  - compose:   pick the fields of a content type and clean each one
  - clean:     html -> noise -> markdown -> urls -> emails -> unicode -> whitespace
  - estimate:  model-agnostic token estimate (CJK chars weigh 1.5, others 0.25)
  - truncate:  longest prefix under the token limit, cut at a word boundary
  - hash:      sha256 hex, the idempotency key

Content types are a closed set. Every member of ContentType must have a
composer; the module refuses to import otherwise.
"""
import hashlib
import math
import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from bs4 import BeautifulSoup

MAX_TOKENS = 8000

_CJK_RE = re.compile(r"[一-鿿]")


class ContentType(str, Enum):
    PRODUCT = "product"
    POST = "post"
    GALLERY_ITEM = "gallery_item"
    COMMENT = "comment"


# Comments are indexed but not offered as default search / similar-item targets
SEARCHABLE_TYPES = (ContentType.PRODUCT, ContentType.POST, ContentType.GALLERY_ITEM)


@dataclass
class PreparedContent:
    content: str
    content_hash: str
    truncated: bool


@dataclass
class ContentContext:
    """Metadata handed to the quality judge alongside a chunk."""
    content_type: ContentType
    content_id: str
    title: Optional[str] = None
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)


# ── Markup stripping ─────────────────────────────────

def _remove_html(text: str) -> str:
    if "<" not in text and "&" not in text:
        return text
    soup = BeautifulSoup(text, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text(" ")


def strip_html(text: str) -> str:
    """Drop script/style blocks and tags, decode entities, collapse whitespace."""
    return re.sub(r"\s+", " ", _remove_html(text)).strip()


def strip_markdown(text: str, preserve_headings: bool = False, collapse: bool = True) -> str:
    """Strip markdown in a fixed order.

    code fences -> inline code -> headers -> emphasis -> images/links ->
    rules -> blockquotes -> list markers -> whitespace.

    preserve_headings keeps '# ' markers so the chunker can split on them;
    collapse=False keeps line structure (paragraph breaks) intact.
    """
    text = re.sub(r"```[\s\S]*?```", " ", text)
    text = re.sub(r"`[^`]+`", " ", text)
    if not preserve_headings:
        text = re.sub(r"^#{1,6}[ \t]+", "", text, flags=re.M)
    text = re.sub(r"(\*\*|__)(.*?)\1", r"\2", text)
    text = re.sub(r"(\*|_)(.*?)\1", r"\2", text)
    text = re.sub(r"!\[([^\]]*)\]\([^)]+\)", "", text)
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)
    text = re.sub(r"^[-*_]{3,}[ \t]*$", "", text, flags=re.M)
    text = re.sub(r"^>[ \t]+", "", text, flags=re.M)
    text = re.sub(r"^[ \t]*[-*+][ \t]+", "", text, flags=re.M)
    text = re.sub(r"^[ \t]*\d+\.[ \t]+", "", text, flags=re.M)
    if collapse:
        return re.sub(r"\s+", " ", text).strip()
    return text


def normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r" {2,}", " ", text)
    return text.strip()


# ── Cleaners ─────────────────────────────────────────

NOISE_PATTERNS = [
    re.compile(r"^(?:Home|About|Contact|Products|Services)(?: *\| *[\w ]+)+$", re.I | re.M),
    re.compile(r"^ *(?:首頁|關於|聯絡|產品|服務)(?: *[|｜] *[一-鿿\w ]+)+$", re.M),
    re.compile(r"©\s*\d{4}.*$", re.I | re.M),
    re.compile(r"Copyright\s*©?\s*\d{4}.*$", re.I | re.M),
    re.compile(r"點此閱讀更多|閱讀更多|查看更多|了解更多"),
    re.compile(r"Read more|View more|Learn more|Click here", re.I),
    re.compile(r"Loading\.{2,}|載入中\.{2,}", re.I),
    re.compile(r"\[AD\]|\[廣告\]|\[Sponsored\]|Sponsored", re.I),
    re.compile(r"\[link\]|\[連結\]", re.I),
]

# Sentence-ending 。！？ stay full-width: the sentence splitter keys on them
_FULLWIDTH = "０１２３４５６７８９" \
    "ＡＢＣＤＥＦＧＨＩＪＫＬＭＮＯＰＱＲＳＴＵＶＷＸＹＺ" \
    "ａｂｃｄｅｆｇｈｉｊｋｌｍｎｏｐｑｒｓｔｕｖｗｘｙｚ" \
    "，：；（）　"
_HALFWIDTH = "0123456789" \
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ" \
    "abcdefghijklmnopqrstuvwxyz" \
    ",:;() "
FULLWIDTH_TO_HALFWIDTH = str.maketrans(_FULLWIDTH, _HALFWIDTH)


def remove_noise_patterns(text: str) -> str:
    for pattern in NOISE_PATTERNS:
        text = pattern.sub("", text)
    return text


def remove_urls(text: str) -> str:
    return re.sub(r"https?://\S+", "", text)


def redact_emails(text: str) -> str:
    return re.sub(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "[EMAIL]", text)


def normalize_unicode(text: str) -> str:
    return unicodedata.normalize("NFC", text).translate(FULLWIDTH_TO_HALFWIDTH)


def clean_text(text: str, preserve_headings: bool = False) -> str:
    """Full cleaning pass for one raw field. Keeps paragraph breaks."""
    text = _remove_html(text)
    text = remove_noise_patterns(text)
    text = strip_markdown(text, preserve_headings=preserve_headings, collapse=False)
    text = remove_urls(text)
    text = redact_emails(text)
    text = normalize_unicode(text)
    return normalize_whitespace(text)


# ── Token estimate / truncation / hash ───────────────

def estimate_tokens(text: str) -> int:
    cjk = len(_CJK_RE.findall(text))
    other = len(text) - cjk
    return math.ceil(cjk * 1.5 + other * 0.25)


def truncate_to_token_limit(text: str, max_tokens: int = MAX_TOKENS) -> str:
    """Longest prefix whose estimate fits max_tokens.

    Returns text unchanged when it already fits. Otherwise the prefix is
    found by binary search and cut back to the last space when that space
    lies within the final 20% of the prefix.
    """
    if estimate_tokens(text) <= max_tokens:
        return text

    low, high = 0, len(text)
    while low < high:
        mid = (low + high + 1) // 2
        if estimate_tokens(text[:mid]) <= max_tokens:
            low = mid
        else:
            high = mid - 1
    result = text[:low]

    last_space = result.rfind(" ")
    if last_space > len(result) * 0.8:
        result = result[:last_space]
    return result.strip()


def hash_content(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ── Composers (one per content type) ─────────────────

def _field(fields: dict, key: str) -> str:
    value = fields.get(key)
    if value is None:
        return ""
    return str(value).strip()


def _merged_tags(fields: dict) -> list[str]:
    tags: list[str] = []
    for key in ("tags", "tags_en", "tags_zh"):
        value = fields.get(key)
        if isinstance(value, (list, tuple)):
            tags.extend(str(t).strip() for t in value)
    seen: set[str] = set()
    unique = []
    for tag in tags:
        if tag and tag not in seen:
            seen.add(tag)
            unique.append(tag)
    return unique


def _compose_product(fields: dict) -> list[str]:
    keys = (
        "name", "name_en", "name_zh",
        "description_short_en", "description_short_zh",
        "description_en", "description_zh",
        "description_full_en", "description_full_zh",
    )
    parts = [_field(fields, k) for k in keys]
    tags = _merged_tags(fields)
    if tags:
        parts.append(", ".join(tags))
    if _field(fields, "category"):
        parts.append(f"Category: {_field(fields, 'category')}")
    return parts


def _compose_post(fields: dict) -> list[str]:
    keys = ("title_en", "title_zh", "excerpt_en", "excerpt_zh", "body")
    return [_field(fields, k) for k in keys]


def _compose_gallery_item(fields: dict) -> list[str]:
    keys = ("title_en", "title_zh", "description_en", "description_zh")
    return [_field(fields, k) for k in keys]


def _compose_comment(fields: dict) -> list[str]:
    return [_field(fields, "content")]


_COMPOSERS: dict[ContentType, Callable[[dict], list[str]]] = {
    ContentType.PRODUCT: _compose_product,
    ContentType.POST: _compose_post,
    ContentType.GALLERY_ITEM: _compose_gallery_item,
    ContentType.COMMENT: _compose_comment,
}

_missing = [t.value for t in ContentType if t not in _COMPOSERS]
if _missing:
    raise RuntimeError(f"No composer registered for content type(s): {', '.join(_missing)}")


def compose(content_type: ContentType, fields: dict, preserve_headings: bool = False) -> str:
    """Compose and clean the raw fields of one item into a single text."""
    composer = _COMPOSERS[ContentType(content_type)]
    parts = [clean_text(p, preserve_headings=preserve_headings) for p in composer(fields) if p]
    return normalize_whitespace("\n\n".join(p for p in parts if p))


def prepare_content(
    content_type: ContentType,
    fields: dict,
    max_tokens: int = MAX_TOKENS,
    preserve_headings: bool = False,
) -> PreparedContent:
    composed = compose(content_type, fields, preserve_headings=preserve_headings)
    content = truncate_to_token_limit(composed, max_tokens)
    return PreparedContent(
        content=content,
        content_hash=hash_content(content),
        truncated=estimate_tokens(composed) > max_tokens,
    )


def content_context(content_type: ContentType, content_id: str, fields: dict) -> ContentContext:
    title = (
        _field(fields, "name_en") or _field(fields, "name") or _field(fields, "name_zh")
        or _field(fields, "title_en") or _field(fields, "title_zh")
    )
    return ContentContext(
        content_type=ContentType(content_type),
        content_id=content_id,
        title=title or None,
        category=_field(fields, "category") or None,
        tags=_merged_tags(fields),
    )
