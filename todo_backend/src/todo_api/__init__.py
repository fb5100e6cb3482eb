"""
Todo Backend package.

Per-user todo API (FastAPI) with recurring todos, bulk reordering and a
periodic cleanup of completed items. The ASGI application lives in
todo_api.main:app.
"""

__version__ = "0.1.0"
