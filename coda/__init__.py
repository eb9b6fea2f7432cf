"""Coda: a conversational assistant for a piano teaching studio.

Architecture Overview
=====================

The engine turns one user message into one assistant reply:

1. **Admission** (``engine/service.py``): the session token is validated,
   the conversation is locked (concurrent requests are rejected, not
   queued) and one message is charged against the session's allowance.

2. **Agent loop** (``engine/loop.py``): a small explicit state machine
   alternates model calls with tool dispatch until the model answers in
   plain text or the iteration cap (5 model calls) is reached.

3. **Tools** (``tools/``): knowledge search, Calendly availability, widget
   attachments and booking emails.  The dispatcher turns every failure
   into text the model can react to.

Key Design Decisions
--------------------
- **LLM**: Claude via ``langchain-anthropic`` by default, OpenAI via
  ``langchain-openai`` when ``AI_PROVIDER=openai``.
- **Quotas**: 25 messages per session, sessions expire after 24 hours,
  3 new sessions per origin per day. Expiry is checked on access, the
  periodic sweep is housekeeping only.
- **Memory**: in-process transcripts trimmed to the last 20 turns; a tool
  call is never separated from its result when trimming.
- **Bookings**: never made directly. Details are emailed to the teacher.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development).

Package Structure
-----------------
- ``coda/agent.py`` — engine assembly (LLM, tool registry, chat service)
- ``coda/config.py`` — Centralized configuration from environment variables
- ``coda/prompts.py`` — System prompt with business details and date
- ``coda/server.py`` — FastAPI application
- ``coda/main.py`` — CLI chat interface
- ``coda/engine/`` — quota ledger, guard, transcripts, dispatcher, loop
- ``coda/services/`` — Knowledge base, Calendly, mail, metrics, widget payloads
- ``coda/tools/`` — Tool specs exposed to the model
- ``coda/api/`` — FastAPI routes and Pydantic schemas
"""
