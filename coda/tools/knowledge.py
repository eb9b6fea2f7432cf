"""Knowledge-base search tool.

Returns excerpts from the studio's markdown documents so the model answers
from real information instead of guessing.
"""

from __future__ import annotations

import logging
from typing import Literal

from langchain_core.messages import AnyMessage
from pydantic import BaseModel, Field

from coda.engine.dispatcher import ToolOk, ToolSpec
from coda.services.knowledge import extract_relevant_section, get_knowledge_base

logger = logging.getLogger(__name__)

MAX_RESULTS = 2
SEPARATOR = "\n\n---\n\n"
NO_RESULTS = (
    "No specific information found in the knowledge base for this query. "
    "You may want to suggest the user contact the studio directly through "
    "the website contact form for more details."
)

Topic = Literal["teacher", "pricing", "areas", "exams", "lessons", "schedule", "faq"]


class SearchKnowledgeArgs(BaseModel):
    query: str = Field(
        min_length=1,
        description="The question or keywords to look up. Be specific about what is needed.",
    )
    topics: list[Topic] | None = Field(
        default=None,
        description=(
            "Topics to read directly. Leave empty to search everything. "
            "teacher (background), pricing (costs, packages), areas (locations served), "
            "exams (ABRSM, RIAM), lessons (types, formats), schedule (availability), "
            "faq (common questions)."
        ),
    )


def search_knowledge(args: SearchKnowledgeArgs, transcript: list[AnyMessage]) -> ToolOk:
    kb = get_knowledge_base()

    if args.topics:
        sections = []
        for topic in args.topics:
            doc = kb.by_topic(topic)
            if doc:
                section = extract_relevant_section(doc.content, args.query)
                sections.append(f"## Information from {topic}:\n\n{section}")
        if sections:
            return ToolOk(SEPARATOR.join(sections))

    results = kb.search(args.query)
    if not results:
        logger.info("Knowledge search found nothing for %r", args.query)
        return ToolOk(NO_RESULTS)

    return ToolOk(SEPARATOR.join(
        f"## {doc.topic}:\n\n{extract_relevant_section(doc.content, args.query)}"
        for doc in results[:MAX_RESULTS]
    ))


KNOWLEDGE_TOOLS = [
    ToolSpec(
        name="search_knowledge",
        description=(
            "Search the knowledge base for information about piano lessons: pricing, "
            "schedule, exams (ABRSM, RIAM), teacher background, service areas, lesson "
            "types and FAQs. Always use this before answering factual questions."
        ),
        args_schema=SearchKnowledgeArgs,
        handler=search_knowledge,
    ),
]
