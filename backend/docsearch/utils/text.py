"""Markdown normalisation and chunking helpers for embedding input."""

from __future__ import annotations

import re

_CODE_FENCE = re.compile(r"```.*?```|~~~.*?~~~", re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]*\)")
_LINK = re.compile(r"\[([^\]]*)\]\([^)]*\)")
_REFERENCE_LINK = re.compile(r"\[([^\]]*)\]\[[^\]]*\]")
_FOOTNOTE_DEFINITION = re.compile(r"^\[\^[^\]]+\]:.*$", re.MULTILINE)
_REFERENCE_DEFINITION = re.compile(r"^\[[^\]]+\]:\s*\S+.*$", re.MULTILINE)
_URL = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]+>")
_HORIZONTAL_RULE = re.compile(r"^[ \t]*[-*_]{3,}[ \t]*$", re.MULTILINE)
_BLOCKQUOTE = re.compile(r"^[ \t]*>[ \t]?", re.MULTILINE)
_HEADING = re.compile(r"^[ \t]*#{1,6}[ \t]+", re.MULTILINE)
_BULLET = re.compile(r"^[ \t]*[-*+][ \t]+", re.MULTILINE)
_ORDERED = re.compile(r"^[ \t]*\d+\.[ \t]+", re.MULTILINE)
_TASK_MARKER = re.compile(r"\[[ xX]\]\s*")
_FOOTNOTE_MARKER = re.compile(r"\[\^[^\]]+\]")
_STRONG = re.compile(r"(\*\*|__)(.*?)\1")
_EMPHASIS_STAR = re.compile(r"\*([^*\n]+)\*")
_EMPHASIS_UNDERSCORE = re.compile(r"(?<!\w)_([^_\n]+)_(?!\w)")
_STRIKETHROUGH = re.compile(r"~~([^~]+)~~")
_LEFTOVER_SYNTAX = re.compile(r"[\\|`~^]")
_WHITESPACE_RUN = re.compile(r"\s+")
_SENTENCE_ENDS = (". ", "? ", "! ")


def collapse_whitespace(text: str) -> str:
    """Collapse consecutive whitespace characters into single spaces."""

    if not text:
        return ""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def _image_alt(match: re.Match[str]) -> str:
    alt = match.group(1).strip()
    # Short alt strings are usually file names or "image"; keep only descriptive ones.
    return f" {alt} " if len(alt.split()) > 2 else " "


def clean_markdown(raw_text: str) -> str:
    """
    Strip markdown syntax from *raw_text*, keeping only the prose.

    Code blocks, inline code, URLs and raw HTML are dropped; link text, heading
    text and emphasised text are kept. Image alt text survives only when it has
    more than two words.
    """

    if not raw_text:
        return ""

    text = _CODE_FENCE.sub(" ", raw_text)
    text = _INLINE_CODE.sub(" ", text)
    text = _IMAGE.sub(_image_alt, text)
    text = _LINK.sub(r" \1 ", text)
    text = _REFERENCE_LINK.sub(r" \1 ", text)
    text = _FOOTNOTE_DEFINITION.sub("", text)
    text = _REFERENCE_DEFINITION.sub("", text)
    text = _URL.sub(" ", text)
    text = _HTML_TAG.sub(" ", text)
    text = _HORIZONTAL_RULE.sub(" ", text)
    text = _BLOCKQUOTE.sub("", text)
    text = _HEADING.sub("", text)
    text = _BULLET.sub(" ", text)
    text = _ORDERED.sub(" ", text)
    text = _TASK_MARKER.sub(" ", text)
    text = _FOOTNOTE_MARKER.sub(" ", text)
    text = _STRONG.sub(r" \2 ", text)
    text = _EMPHASIS_STAR.sub(r" \1 ", text)
    text = _EMPHASIS_UNDERSCORE.sub(r" \1 ", text)
    text = _STRIKETHROUGH.sub(r" \1 ", text)
    text = _LEFTOVER_SYNTAX.sub(" ", text)
    return collapse_whitespace(text)


def compose_passage(title: str, body: str, max_length: int = 1800) -> str:
    """Join an already-cleaned *body* to its *title* and bound the result to *max_length* characters."""

    title = collapse_whitespace(title)
    body = collapse_whitespace(body)
    combined = f"{title}. {body}" if title and body else (title or body)
    if len(combined) > max_length:
        return combined[: max(0, max_length - 3)] + "..."
    return combined


def prepare_passage(title: str, raw_text: str, max_length: int = 1800) -> str:
    """Return the document passage to embed: title first, then the cleaned body."""

    return compose_passage(title, clean_markdown(raw_text), max_length=max_length)


def extract_excerpt(raw_text: str, max_length: int = 160) -> str:
    cleaned = clean_markdown(raw_text)
    if len(cleaned) <= max_length:
        return cleaned

    truncated = cleaned[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.7:
        return truncated[:last_space] + "..."
    return truncated + "..."


def chunk_spans(text: str, max_chunk_size: int = 1500, overlap: int = 200) -> list[tuple[int, int]]:
    """
    Compute `(start, end)` windows over *text*.

    A window ends at the last sentence boundary inside it when that boundary
    lies past half the window, otherwise at the hard limit. Each following
    window starts *overlap* characters before the previous end.
    """

    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")
    if overlap < 0 or overlap * 2 >= max_chunk_size:
        raise ValueError("overlap must be non-negative and smaller than half of max_chunk_size")

    length = len(text)
    if length <= max_chunk_size:
        return [(0, length)]

    spans: list[tuple[int, int]] = []
    start = 0
    while start < length:
        end = start + max_chunk_size
        if end < length:
            window = text[start:end]
            sentence_end = max(window.rfind(marker) for marker in _SENTENCE_ENDS)
            if sentence_end > max_chunk_size * 0.5:
                end = start + sentence_end + 1
        else:
            end = length
        if text[start:end].strip():
            spans.append((start, end))
        if end >= length:
            break
        start = end - overlap
    return spans


def chunk_document(raw_text: str, max_chunk_size: int = 1500, overlap: int = 200) -> list[str]:
    """Clean *raw_text* and split it into overlapping chunks for multi-vector embedding."""

    cleaned = clean_markdown(raw_text)
    return [cleaned[start:end] for start, end in chunk_spans(cleaned, max_chunk_size, overlap)]
