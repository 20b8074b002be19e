"""Dependency injection module for FastAPI.

This module provides dependency injection functions for FastAPI routes.
Managers are cheap wrappers around the process-wide document store.
"""

from typing import Annotated

from fastapi import Depends

from core.database import get_store
from utils import assignment_manager
from utils import attempt_manager
from utils import class_manager
from utils import user_manager
from utils.document_store import DocumentStore


def get_user_manager(
    store: DocumentStore = Depends(get_store),
) -> user_manager.UserManager:
    """Get UserManager instance bound to the document store.

    Args:
        store: Document store.

    Returns:
        UserManager instance.
    """
    return user_manager.UserManager(store)


def get_class_manager(
    store: DocumentStore = Depends(get_store),
) -> class_manager.ClassManager:
    """Get ClassManager instance bound to the document store."""
    return class_manager.ClassManager(store)


def get_assignment_manager(
    store: DocumentStore = Depends(get_store),
) -> assignment_manager.AssignmentManager:
    """Get AssignmentManager instance bound to the document store."""
    return assignment_manager.AssignmentManager(store)


def get_attempt_manager(
    store: DocumentStore = Depends(get_store),
) -> attempt_manager.AttemptManager:
    """Get AttemptManager instance bound to the document store."""
    return attempt_manager.AttemptManager(store)


# Type aliases for dependency injection
StoreDep = Annotated[DocumentStore, Depends(get_store)]
UserManagerDep = Annotated[
    user_manager.UserManager, Depends(get_user_manager)
]
ClassManagerDep = Annotated[
    class_manager.ClassManager, Depends(get_class_manager)
]
AssignmentManagerDep = Annotated[
    assignment_manager.AssignmentManager, Depends(get_assignment_manager)
]
AttemptManagerDep = Annotated[
    attempt_manager.AttemptManager, Depends(get_attempt_manager)
]
