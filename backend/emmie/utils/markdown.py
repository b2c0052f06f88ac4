"""
Markdown helpers for plain-text previews.
"""
import re

_CODE_BLOCK_RE = re.compile(r'```[\s\S]*?```')
_HEADER_RE = re.compile(r'^\s*#{1,6}\s+', re.MULTILINE)
_IMAGE_RE = re.compile(r'!\[([^\]]*)\]\([^)]+\)')
_LINK_RE = re.compile(r'\[([^\]]+)\]\([^)]+\)')
_BOLD_RE = re.compile(r'(\*\*|__)(.*?)\1')
_ITALIC_RE = re.compile(r'(?<![\w*])[*_](?!\s)(.+?)(?<!\s)[*_](?![\w*])')
_INLINE_CODE_RE = re.compile(r'`([^`]*)`')
_BULLET_RE = re.compile(r'^\s*[-*+]\s+', re.MULTILINE)
_NUMBERED_RE = re.compile(r'^\s*\d+\.\s+', re.MULTILINE)
_QUOTE_RE = re.compile(r'^\s*>\s?', re.MULTILINE)
_SENTENCE_RE = re.compile(r'[.!?]+')


def strip_markdown(markdown: str) -> str:
    """
    Remove common markdown formatting, keeping the readable text.

    Code blocks are dropped entirely; links and images keep their text.
    """
    if not markdown:
        return ""

    text = _CODE_BLOCK_RE.sub("", markdown)
    text = _HEADER_RE.sub("", text)
    text = _IMAGE_RE.sub(r"\1", text)
    text = _LINK_RE.sub(r"\1", text)
    text = _BOLD_RE.sub(r"\2", text)
    text = _ITALIC_RE.sub(r"\1", text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    text = _BULLET_RE.sub("", text)
    text = _NUMBERED_RE.sub("", text)
    text = _QUOTE_RE.sub("", text)
    return text.strip()


def extract_summary(markdown: str, max_length: int = 200) -> str:
    """
    Plain-text summary of at most ``max_length`` characters.

    Whole sentences are kept where possible; otherwise the text is cut and
    an ellipsis appended.
    """
    plain = strip_markdown(markdown)
    if len(plain) <= max_length:
        return plain

    summary = ""
    for sentence in _SENTENCE_RE.split(plain):
        sentence = sentence.strip()
        if not sentence:
            continue
        candidate = f"{summary}{sentence}. "
        if len(candidate.strip()) > max_length:
            break
        summary = candidate

    summary = summary.strip()
    if summary:
        return summary

    return plain[:max_length].rstrip() + "..."
