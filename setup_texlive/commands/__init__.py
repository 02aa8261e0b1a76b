"""CLI command implementations for setup_texlive.

This module contains all command-line interface implementations:
- install: Install TeX Live or update a cached installation
- save: Save the installation to the cache after the job
- keys: Show cache keys for a configuration
- releases: Show the known TeX Live releases
"""

from setup_texlive.commands.setup import install, keys, releases, save

__all__ = ["install", "keys", "releases", "save"]
