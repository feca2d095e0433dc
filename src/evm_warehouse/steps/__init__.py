from . import coerce, plan

__all__ = ["coerce", "plan"]
