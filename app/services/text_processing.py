"""
Text processing for knowledge ingestion: cleaning and chunking.

Chunks are packed from whole sentences so each embedded passage reads as a unit;
a short sentence tail is carried into the next chunk as overlap.
"""

import re
import unicodedata

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def clean_text(text: str) -> str:
    """
    NFKC-normalize, strip each line, drop consecutive duplicate lines and
    collapse runs of blank lines to one.
    """
    if not text or not text.strip():
        return ""
    text = unicodedata.normalize("NFKC", text).replace("\x00", " ").replace("\x7f", " ")
    result: list[str] = []
    for line in (ln.strip() for ln in text.splitlines()):
        if result and result[-1] == line:
            continue
        result.append(line)
    return "\n".join(result).strip()


def _split_long(sentence: str, chunk_size: int) -> list[str]:
    """Break a sentence longer than chunk_size on word boundaries."""
    pieces: list[str] = []
    current = ""
    for word in sentence.split():
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= chunk_size or not current:
            current = candidate
        else:
            pieces.append(current)
            current = word
    if current:
        pieces.append(current)
    return pieces


def _tail(sentences: list[str], overlap: int) -> list[str]:
    tail: list[str] = []
    size = 0
    for s in reversed(sentences):
        if size + len(s) + 1 > overlap:
            break
        tail.insert(0, s)
        size += len(s) + 1
    return tail


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 100) -> list[str]:
    """Split text into sentence-packed chunks of at most ~chunk_size characters."""
    if not text or not text.strip():
        return []
    text = text.strip()
    if len(text) <= chunk_size:
        return [text]

    sentences: list[str] = []
    for s in _SENTENCE_SPLIT.split(text):
        s = " ".join(s.split())
        if not s:
            continue
        sentences.extend(_split_long(s, chunk_size) if len(s) > chunk_size else [s])

    chunks: list[str] = []
    current: list[str] = []
    for sent in sentences:
        joined = " ".join(current + [sent])
        if current and len(joined) > chunk_size:
            chunks.append(" ".join(current))
            current = _tail(current, overlap)
            if len(" ".join(current + [sent])) > chunk_size:
                current = []
        current.append(sent)
    if current:
        chunks.append(" ".join(current))
    return chunks
