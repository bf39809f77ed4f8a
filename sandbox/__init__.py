"""
Sandbox Module

Isolated execution environment for target scripts.

This module provides:
- Subprocess-based execution (one child interpreter per run)
- Wall-clock timeout enforcement
- Memory and CPU limits (platform-dependent)
- Restricted builtins and import allowlisting inside the realm
- Entry-point rewriting so ``main`` takes no caller-supplied arguments

WARNING: This sandbox is NOT a security boundary against hostile code. It
limits what a well-meaning script can reach, and keeps a misbehaving one from
taking the harness down with it.
"""

__version__ = "3.0.0"
