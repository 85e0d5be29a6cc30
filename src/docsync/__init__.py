"""
docsync: connector sync engine.

Pulls documents from remote content providers and emits them as a uniform
stream of RawDocument / RawDocumentChange items, with an opaque cursor for
incremental runs.
"""

__version__ = "0.1.0"
