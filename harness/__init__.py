"""
Harness Module

Core pieces of the script execution pipeline.

This module provides:
- Capability loading with fallbacks (ModuleLoader)
- Execution context assembly (ContextBuilder)
- Database helpers exposed to target scripts
- The admission gate (marker, bypass and record-count checks)
- Colored console logging
"""

__version__ = "3.0.0"
