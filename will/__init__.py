# will/__init__.py
# Sileme will package initializer

# Keep this light: importing the package must not start threads or touch disk.
__all__ = [
    "collaborators", "config", "distribution", "errors", "events", "health",
    "history", "machine", "model", "pipeline", "utils", "wal",
]
