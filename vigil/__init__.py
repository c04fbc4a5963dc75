# vigil/__init__.py
# Proof-of-life watchers: activity monitor, sealed-will countdown, background watcher loop

__all__ = ["activity", "countdown", "watcher"]
