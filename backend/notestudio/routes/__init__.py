"""
NoteStudio Backend — API Routes Package
=========================================

Route Inventory:
    - projects.py: /api/projects          (list, upsert, save-all, delete, edit version)
    - drafts.py:   /api/drafts            (list, upsert, autosave, delete)
    - ai.py:       /api/ai                (transcribe, refine, single; untracked)
    - tasks.py:    /api/tasks             (tracked generation tasks + SSE stream)
    - health.py:   /health

Routes stay thin: parse the request, call a service from app.state, shape
the response. Errors propagate to the handlers registered in main.py.
"""
