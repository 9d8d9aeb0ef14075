"""
Version information for the Giphy connector.
This file follows semantic versioning (MAJOR.MINOR.PATCH):
- MAJOR version for incompatible changes of the callback protocol or the database schema
- MINOR version for backwards-compatible functionality
- PATCH version for backwards-compatible bug fixes
"""

__version__ = "0.3.0"
__version_info__ = tuple(map(int, __version__.split('.')))
