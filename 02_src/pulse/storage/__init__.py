"""Storage module."""

from .storage import IAgentRegistry, IStorage, ITaskStore, Storage

__all__ = ["IAgentRegistry", "IStorage", "ITaskStore", "Storage"]
