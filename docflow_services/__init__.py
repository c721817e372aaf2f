"""Workflow surface over the docflow kernel: RBAC, collaborators, units of work."""

from docflow_services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationKind,
)
from docflow_services.rbac_authority import Actor, Capability, Role
from docflow_services.storage import (
    InMemoryObjectStore,
    LocalDirectoryObjectStore,
    ObjectStore,
)
from docflow_services.workflow import DocumentWorkflow

__all__ = [
    "Actor",
    "Capability",
    "DocumentWorkflow",
    "InMemoryObjectStore",
    "LocalDirectoryObjectStore",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "NotificationKind",
    "ObjectStore",
    "Role",
]
