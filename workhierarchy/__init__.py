"""Work hierarchy - team-scoped work item trees."""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__all__ = [
    "errors",
    "hierarchy",
    "hierarchy_logging",
    "models",
    "service",
    "store",
]
