"""
Utility modules for the search engine.
"""

from .config import Config, ConfigManager, load_config

__all__ = ['Config', 'ConfigManager', 'load_config']
