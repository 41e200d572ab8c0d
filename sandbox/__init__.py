"""
Sandbox Module

Subprocess-based execution environment for untrusted shell commands.

This module provides:
- Script engine: runtime, per-command isolated context, scoped disposal
- Child process protocol: one interpreter per evaluation, JSON lines
- Interrupt policies (wall-clock deadline or checkpoint count)
- Memory, stack and CPU limits, enforced in the child
- Restricted builtins, import allowlisting and source validation
- The log/err/get/set host callback surface
- Best-effort security (documented limitations)

WARNING: This sandbox is NOT a security boundary against a determined
attacker. The child runs with the host user's privileges; the policy and
the resource limits restrict what ordinary commands can reach.
"""

__version__ = "0.1.0"
