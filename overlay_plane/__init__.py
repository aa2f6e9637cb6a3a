# overlay_plane/__init__.py
"""
Overlay Plane - control plane for hub-and-spoke / mesh WireGuard overlays

Provisions isolated overlay networks, allocates their addresses and
emits versioned WireGuard configuration for every hub and member.
"""

__version__ = "1.0.0"
