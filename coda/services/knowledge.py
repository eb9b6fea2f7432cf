"""Keyword-scored knowledge base over the studio's markdown documents.

Each file in ``KNOWLEDGE_DIR`` covers one topic (pricing, exams, areas, …)
and carries a hand-picked keyword list.  ``search`` ranks documents by
keyword and content overlap with the query; ``extract_relevant_section``
cuts a bounded excerpt so tool results stay small.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from coda.config import KNOWLEDGE_DIR

logger = logging.getLogger(__name__)

DEFAULT_EXCERPT_CHARS = 1500
_SECTION_LINES = 30

# filename → (topic, keywords)
KNOWLEDGE_MAP: dict[str, tuple[str, list[str]]] = {
    "teacher.md": ("teacher", [
        "teacher", "experience", "qualifications", "education", "background",
        "teaching style", "about", "who",
    ]),
    "pricing.md": ("pricing", [
        "price", "cost", "fee", "payment", "how much", "expensive", "cheap",
        "rate", "package", "discount", "family", "bulk", "trial",
    ]),
    "areas.md": ("areas", [
        "area", "location", "where", "mullingar", "westmeath", "offaly",
        "tullamore", "kildare", "maynooth", "lucan", "service area", "cover",
    ]),
    "exams.md": ("exams", [
        "exam", "abrsm", "riam", "grade", "test", "junior cert", "leaving cert",
        "certificate", "school", "examination", "board", "qualification",
    ]),
    "lessons.md": ("lessons", [
        "lesson", "class", "teaching", "beginner", "intermediate", "advanced",
        "age", "children", "adult", "group", "accompaniment", "type", "format",
        "duration", "long",
    ]),
    "schedule.md": ("schedule", [
        "schedule", "availability", "available", "when", "time", "day",
        "weekday", "weekend", "saturday", "sunday", "booking", "appointment",
    ]),
    "faq.md": ("faq", [
        "question", "faq", "help", "how", "what", "why", "practice", "piano",
        "start", "getting started",
    ]),
}

TOPICS: list[str] = [topic for topic, _ in KNOWLEDGE_MAP.values()]


@dataclass
class KnowledgeDocument:
    filename: str
    topic: str
    content: str
    keywords: list[str] = field(default_factory=list)


def extract_relevant_section(
    content: str,
    query: str,
    max_length: int = DEFAULT_EXCERPT_CHARS,
) -> str:
    """Return the window of lines that best matches *query*.

    Windows longer than *max_length* are skipped.  When nothing matches,
    the head of the document is returned instead.
    """
    words = [w for w in query.lower().split() if len(w) > 3]
    lines = content.split("\n")

    best_section = ""
    best_score = 0
    for i in range(len(lines)):
        section = "\n".join(lines[i : i + _SECTION_LINES])
        if len(section) > max_length:
            continue
        section_lower = section.lower()
        score = sum(1 for w in words if w in section_lower)
        if score > best_score:
            best_score = score
            best_section = section

    if best_score > 0 and best_section:
        return best_section
    return content[:max_length]


class KnowledgeBase:
    """Topic documents loaded once from disk."""

    def __init__(self, directory: Path | None = None) -> None:
        self._directory = directory or KNOWLEDGE_DIR
        self._documents: list[KnowledgeDocument] = []
        self.load()

    def load(self) -> int:
        """(Re)read every known file.  Missing files are skipped with a warning."""
        documents: list[KnowledgeDocument] = []
        for filename, (topic, keywords) in KNOWLEDGE_MAP.items():
            path = self._directory / filename
            try:
                content = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                logger.warning("Knowledge file %s not found", path)
                continue
            documents.append(KnowledgeDocument(filename, topic, content, keywords))
        self._documents = documents
        logger.info("Knowledge base loaded: %d documents from %s", len(documents), self._directory)
        return len(documents)

    @property
    def documents(self) -> list[KnowledgeDocument]:
        return list(self._documents)

    def by_topic(self, topic: str) -> KnowledgeDocument | None:
        return next((d for d in self._documents if d.topic == topic), None)

    def search(self, query: str) -> list[KnowledgeDocument]:
        """Documents with a positive score, best first."""
        query_lower = query.lower()
        query_words = query_lower.split()

        scored: list[tuple[float, KnowledgeDocument]] = []
        for doc in self._documents:
            score = 0.0
            for keyword in doc.keywords:
                for word in query_words:
                    if keyword in word or word in keyword:
                        score += 2
                if keyword in query_lower:
                    score += 1
            content_lower = doc.content.lower()
            for word in query_words:
                if len(word) > 3 and word in content_lower:
                    score += 0.5
            if score > 0:
                scored.append((score, doc))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [doc for _, doc in scored]


# ── Module-level singleton (thread-safe) ────────────────────────────
_kb: KnowledgeBase | None = None
_kb_lock = threading.Lock()


def get_knowledge_base() -> KnowledgeBase:
    """Return the shared ``KnowledgeBase``, loading it on first use."""
    global _kb
    if _kb is None:
        with _kb_lock:
            if _kb is None:
                _kb = KnowledgeBase()
    return _kb
