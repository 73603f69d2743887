# nodescope/utils/__init__.py - Utilities module
"""
Utility functions and helpers.

This module provides:
- config.py: YAML configuration management
- runtime_info.py: Node identity and run inputs from the environment
- logger.py: Logging setup
- helpers.py: Host prerequisite checks
"""
