"""
Domain Layer - entity declarations, metadata, value conversion and predicates.

No external dependencies allowed in this layer.
"""
