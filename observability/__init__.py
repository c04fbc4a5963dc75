# observability/__init__.py
# Prometheus metrics for the will engine

__all__ = ["metrics"]
