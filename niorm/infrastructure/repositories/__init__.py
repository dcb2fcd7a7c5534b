"""
Repository implementations: the entity collection CRUD engine and the data core.
"""

from .data_core import DataCore
from .entities import CollectionState, EntityCollection

__all__ = ["CollectionState", "DataCore", "EntityCollection"]
