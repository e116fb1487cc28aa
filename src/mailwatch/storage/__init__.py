from mailwatch.storage.config_store import ConfigStore, InMemoryConfigStore

__all__ = ["ConfigStore", "InMemoryConfigStore"]
