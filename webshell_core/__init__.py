"""
WebShell Core Module

Actor runtime, message protocol and bounded output pipeline for the terminal.

This module provides:
- Supervisor -> Terminal -> Shell actor hierarchy on asyncio
- Typed message protocol between actors
- Bounded write-queue and rendered-output store (dual limits)
- Configuration schemas and error taxonomy
"""

__version__ = "0.1.0"
