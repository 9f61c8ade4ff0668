from sidequest.c2_hierarchy_service.hierarchy import (
    HierarchyValidator,
    HIERARCHY_LEVELS,
    VALID_PARENT_TYPES,
)

__all__ = ["HierarchyValidator", "HIERARCHY_LEVELS", "VALID_PARENT_TYPES"]
