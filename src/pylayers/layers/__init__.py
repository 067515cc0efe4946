"""Reference layers.

Small, reusable layers built on :class:`pylayers.layer.BaseLayer`. Hosts can
register them as-is or use them as templates for their own entities.
"""

from pylayers.layers.claim import ClaimLayer
from pylayers.layers.registry import RegistryLayer

__all__ = ["ClaimLayer", "RegistryLayer"]
