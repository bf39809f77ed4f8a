"""
RunCode Module

Command-line entry point, configuration and local file server for the
sandboxed script harness.
"""

__version__ = "3.0.0"
