# realtrack/models/__init__.py
"""
Import and register all SQLAlchemy models so Base.metadata knows about them
before you call create_all().
"""

from .user import User, RoleEnum
from .project import Project, ProjectStatusEnum

# Partner access per project (invitations + grants)
from .project_access import ProjectAccess, PermissionEnum

from .document import Document
from .cost import Cost


def register_models():
    return [
        User,
        Project,
        ProjectAccess,
        Document,
        Cost,
    ]

__all__ = [
    "User", "RoleEnum",
    "Project", "ProjectStatusEnum",
    "ProjectAccess", "PermissionEnum",
    "Document",
    "Cost",
    "register_models",
]
