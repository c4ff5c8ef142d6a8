"""
NoteStudio Backend — Services Layer
=====================================

Service Inventory:
    - ProjectStore (abstract) / SqlProjectStore: projects, versions, drafts
    - GenerationClient (abstract) / GeminiService: rewrites and transcription
    - GenerationManager: tracked background generation tasks
    - reconciliation: id-based merges and the save-all path
    - DraftService: de-duplicated autosave
"""
