"""
Storage module for the Site Explorer.

Persists sessions, page records, screenshots, and the global graph store
as JSON documents keyed by session id and page identity.
"""

from site_explorer.storage.files import SessionStorage, build_page_linkages

__all__ = [
    "SessionStorage",
    "build_page_linkages",
]
