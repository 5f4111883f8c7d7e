"""Text extraction for the formats the core handles itself.

Binary office formats belong to an external extraction service that
implements the same ``Extractor`` protocol.
"""

from __future__ import annotations

import re
from email import message_from_bytes, policy
from email.message import EmailMessage
from pathlib import Path
from typing import Protocol

import yaml
from markdown_it import MarkdownIt

from knowledge_hub.core.errors import ExtractionError

_MD = MarkdownIt()
_TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
_EXTRA_BLANK_LINES_RE = re.compile(r"\n{3,}")

_TEXT_MIMES = {"text/plain", "text/csv", "application/json", "text/x-log"}
_MARKDOWN_MIMES = {"text/markdown", "text/x-markdown"}
_EMAIL_MIMES = {"message/rfc822"}
_SUFFIX_MIMES = {
    ".txt": "text/plain",
    ".text": "text/plain",
    ".log": "text/plain",
    ".csv": "text/csv",
    ".json": "application/json",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".mdx": "text/markdown",
    ".eml": "message/rfc822",
}


class Extractor(Protocol):
    def extract_text(self, data: bytes | Path, mime: str | None, filename: str | None = None) -> str: ...


class BasicExtractor:
    """Plain text, Markdown and e-mail extraction."""

    def supports(self, mime: str | None, filename: str | None = None) -> bool:
        return _resolve_mime(mime, filename) is not None

    def extract_text(self, data: bytes | Path, mime: str | None, filename: str | None = None) -> str:
        if isinstance(data, Path):
            filename = filename or data.name
            data = data.read_bytes()
        kind = _resolve_mime(mime, filename)
        if kind is None:
            raise ExtractionError(f"unsupported content type {mime!r} for {filename or 'unnamed file'}")
        if kind in _MARKDOWN_MIMES:
            return _clean(_markdown_to_text(_decode(data)))
        if kind in _EMAIL_MIMES:
            return _clean(_email_to_text(data))
        return _clean(_decode(data))


def _resolve_mime(mime: str | None, filename: str | None) -> str | None:
    base = (mime or "").split(";")[0].strip().lower()
    if base in _TEXT_MIMES or base in _MARKDOWN_MIMES or base in _EMAIL_MIMES:
        return base
    if filename:
        return _SUFFIX_MIMES.get(Path(filename).suffix.lower())
    return None


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="ignore")


def _clean(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _TRAILING_SPACE_RE.sub("\n", text)
    return _EXTRA_BLANK_LINES_RE.sub("\n\n", text).strip()


def _split_front_matter(text: str) -> tuple[dict[str, object] | None, str]:
    if text.startswith("---"):
        parts = text.split("---", 2)
        if len(parts) >= 3:
            try:
                front_matter = yaml.safe_load(parts[1]) or {}
            except yaml.YAMLError:
                return None, text
            if isinstance(front_matter, dict):
                return front_matter, parts[2]
    return None, text


def _markdown_to_text(text: str) -> str:
    _, body = _split_front_matter(text)
    parts = [token.content.strip() for token in _MD.parse(body) if token.content.strip()]
    # one paragraph per block token so paragraph segmentation still works
    return "\n\n".join(parts) if parts else body


def _email_to_text(data: bytes) -> str:
    message = message_from_bytes(data, policy=policy.default)
    subject = message.get("subject", "")
    body = _email_body(message)
    return f"{subject}\n\n{body}" if subject else body


def _email_body(message: EmailMessage) -> str:
    if message.is_multipart():
        parts: list[str] = []
        for part in message.walk():
            if part.get_content_type() == "text/plain":
                payload = part.get_payload(decode=True)
                if payload:
                    parts.append(payload.decode(part.get_content_charset() or "utf-8", errors="ignore"))
        return "\n".join(parts)
    body_part = message.get_body(preferencelist=("plain",))
    if body_part is not None:
        payload = body_part.get_content()
    else:
        payload = message.get_payload(decode=True) or b""
    return payload if isinstance(payload, str) else payload.decode("utf-8", errors="ignore")


__all__ = ["Extractor", "BasicExtractor"]
