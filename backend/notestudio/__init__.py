"""
NoteStudio Backend
==================

Note capture and AI rewriting service.

Layers:
    ┌─────────────────────────────────────┐
    │   Routes (FastAPI)                  │  HTTP only
    ├─────────────────────────────────────┤
    │   Services                          │  generation manager, reconciliation,
    │                                     │  Gemini client, drafts, store
    ├─────────────────────────────────────┤
    │   Models & Schemas                  │  SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │   Database                          │  async SQLAlchemy engine
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
