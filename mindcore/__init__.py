"""Conversational memory and prompt-dispatch core.

Module Overview
---------------

**turns.py**
    The Turn value type and transcript stringification.

**history.py**
    ConversationBuffer -- bounded turn log with role-aware eviction. Evicted
    chunks go to the consolidator and the archive, in eviction order.

**memory_consolidator.py**
    MemoryConsolidator -- one model call per evicted chunk, result capped at
    500 characters.

**history_archive.py**
    HistoryArchive -- JSON array of every evicted turn, one file per session.

**template_resolver.py**
    TemplateResolver -- ``$MARKER`` substitution against live agent state.

**dispatch.py**
    DispatchEngine -- per-purpose prompting with cooldown, hallucination
    retry, staleness cancellation and the coding single-flight guard.

**backends.py**
    ModelBackend contract and the OpenAI-compatible chat backend.

**session_store.py**
    SessionStore -- persisted session file save/load.

Architecture
------------
Each agent owns its own buffer, consolidator, resolver and dispatch engine;
nothing here is shared across sessions. Provider selection and profile
resolution live in ``mindcore_cli`` and run once per session.
"""
