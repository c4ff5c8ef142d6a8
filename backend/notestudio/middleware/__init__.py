"""
NoteStudio Backend — Middleware Package
=========================================

Request chain (first to run first):
    Rate Limit → Request ID → Access Log → GZip → CORS → route

Rate limiting runs first so rejected requests cost nothing; the request id
is set before the access log line is written so every line carries it.
"""
