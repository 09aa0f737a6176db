"""Mega menu composition and staged editing."""

from .models import CatalogNode, MenuEntry, Persisted, Staged
from .session import CommitReport, MenuEditor
from .store import HttpMenuStore, StoreError
from .yaml_store import YamlMenuStore

__all__ = [
    "CatalogNode",
    "CommitReport",
    "HttpMenuStore",
    "MenuEditor",
    "MenuEntry",
    "Persisted",
    "Staged",
    "StoreError",
    "YamlMenuStore",
]
