"""Keeping the local and the remote store in step."""

from .policy import (  # noqa: F401
    ConflictPolicy,
    Decider,
)

from .orchestrator import (  # noqa: F401
    StorageService,
    create_service,
)
