"""
Service layer for downloading and editing media.

This package holds the edit pipeline and its collaborators, independent of
Django. These functions are used by:
- The huey background task (clips/tasks.py)
- The CLI management command (management/commands/clip.py)
"""
