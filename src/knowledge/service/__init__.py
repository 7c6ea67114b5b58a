"""Service layer: the knowledge base facade and shared store handles."""

from knowledge.service.knowledge_base import EntryTree, KnowledgeBase, KnowledgeBaseError
from knowledge.service.stores import StoreRegistry

__all__ = [
    "EntryTree",
    "KnowledgeBase",
    "KnowledgeBaseError",
    "StoreRegistry",
]
