"""
Console Module

Command-line front end for WebShell.

This module provides:
- YAML-based session configuration loading and saving
- Console session driver wiring stdin/stdout to the actor tree
- Typer CLI (run, exec, show-config, init-config)
"""

__version__ = "0.1.0"
