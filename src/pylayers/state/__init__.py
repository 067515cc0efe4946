"""State/store layer.

The store is the single owner of the shared state tree; the engine is its
only caller during a cycle.
"""
