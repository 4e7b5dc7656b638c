"""
Chunker module for splitting the knowledge document into passages.

The document is authored as self-contained FAQ-like units separated by
marker lines such as ``=== Horario de atención ===``. Each stretch of text
between markers becomes one passage; the marker line itself is dropped.

No paragraph- or sentence-level splitting is attempted. A document without
any marker comes back as a single passage.
"""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

# A line made of 3+ '=' signs, a label, and 3+ '=' signs
MARKER_RE = re.compile(r"^[ \t]*={3,}[ \t]*(?P<label>[^=\n]*?)[ \t]*={3,}[ \t]*$", re.MULTILINE)


def load_document(path: str) -> str:
    """Read the knowledge document.

    Args:
        path: Path to the UTF-8 text file holding the extracted document text.

    Returns:
        The document text.

    Raises:
        FileNotFoundError: If the document does not exist (fatal at startup).
    """
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    logger.info(f"[CHUNKER] Loaded document {path} ({len(text):,} chars)")
    return text


def split_into_passages(text: str, max_words: int = 0) -> List[str]:
    """Split a document into trimmed, non-empty passages at marker lines.

    Args:
        text: Raw document text.
        max_words: If > 0, passages longer than this are cut into
                   consecutive windows of ``max_words`` words.

    Returns:
        Ordered list of passage strings.
    """
    if not text or not text.strip():
        logger.warning("[CHUNKER] Document is empty, no passages produced")
        return []

    segments = MARKER_RE.split(text)
    # re.split with one capture group interleaves labels: [pre, label, body, label, body, ...]
    bodies = segments[0::2]
    labels = segments[1::2]

    passages = []
    for body in bodies:
        body = body.strip()
        if not body:
            continue
        if max_words > 0:
            passages.extend(_word_windows(body, max_words))
        else:
            passages.append(body)

    if not labels:
        logger.warning("[CHUNKER] No marker lines found, treating the whole document as one passage")

    logger.info(f"[CHUNKER] Created {len(passages)} passages from {len(labels)} markers")
    return passages


def _word_windows(passage: str, max_words: int) -> List[str]:
    words = passage.split()
    if len(words) <= max_words:
        return [passage]
    return [" ".join(words[i:i + max_words]) for i in range(0, len(words), max_words)]
