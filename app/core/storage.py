"""Workspace store and consensus engine wiring for request handlers."""

import os
import tempfile

from app.core.config import settings
from app.services.consensus import ConsensusEngine, ToolWeights
from app.services.workspace_store import WorkspaceStore

workspace_store = WorkspaceStore.from_settings(settings)

consensus_engine = ConsensusEngine(ToolWeights.from_settings(settings))


def get_store() -> WorkspaceStore:
    """Dependency that returns the process-wide workspace store."""
    return workspace_store


def get_engine() -> ConsensusEngine:
    """Dependency that returns the consensus engine (immutable weights, safe to share)."""
    return consensus_engine


def check_storage_writable(store: WorkspaceStore) -> bool:
    """Create and remove a scratch file under the store root to verify it is writable."""
    try:
        store.root.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(dir=store.root, prefix=".health-"):
            pass
        return os.access(store.root, os.W_OK)
    except OSError:
        return False
