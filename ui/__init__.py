"""
UI Module

Render collaborators consumed by the terminal.

This module provides:
- RenderNode, the unit the rendered-output store holds
- text_to_nodes, the text -> node converter used at enqueue time
- RenderSurface implementations (console output and an in-memory recorder)

Layout, fonts and widget wiring are left to the surface implementation.
"""

__version__ = "0.1.0"
