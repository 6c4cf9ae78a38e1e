"""MTG Collection Agent: a conversational front-end for a card collection tracker.

Architecture Overview
=====================

The agent is a **LangGraph** state machine compiled without a checkpointer.
Clients send the full history with every message, so each request is one
self-contained turn through three nodes:

1. **route** — curates the incoming history, finds the selected printing (if
   any) and picks the phase: *identify* (Scryfall search + selection) or
   *operate* (collection CRUD against the tracker backend).

2. **model** — invokes Claude with the phase instructions and the phase's
   tool catalog bound.

3. **tools** — executes the requested calls one at a time, appending each
   result right after its call.

Routing: route → model → (tool calls?) → tools → model (loop until no tool
calls, or until several candidate printings are shown → END)

Key Design Decisions
--------------------
- **Stateless service**: the phase and the selected card are re-derived from
  history each turn; nothing is stored between requests.
- **History curation**: superseded tool pairs, stale assistant turns and old
  text turns are dropped before every model call; tool calls always stay
  adjacent to their results.
- **Schema-driven tracker tools**: the backend's Swagger document is fetched,
  ``$ref``-resolved and turned into one tool per operation.
- **Resilience**: Scryfall and tracker clients retry timeouts and 5xx with
  exponential backoff; tool failures are reported to the model as
  ``{"status": "error"}`` results instead of aborting the turn.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development).

Package Structure
-----------------
- ``mtg_agent/agent.py``: LangGraph StateGraph and turn drivers
- ``mtg_agent/history.py``: history curation and selection lookup
- ``mtg_agent/messages.py``: wire format ↔ LangChain messages
- ``mtg_agent/prompts.py``: phase instructions
- ``mtg_agent/config.py``: configuration from environment variables
- ``mtg_agent/server.py`` / ``mtg_agent/main.py``: HTTP API and CLI
- ``mtg_agent/services/``: Scryfall, tracker, credentials, cache, metrics
- ``mtg_agent/tools/``: tool catalog, dispatcher, reference lookup
- ``mtg_agent/api/``: FastAPI routes and Pydantic schemas
"""
