"""
potranslate - batch translation of gettext catalogs with LLM completion APIs.

The engine splits a catalog into batches, sends each batch to a remote model
using a compact tagged-block protocol, and merges the replies back into one
catalog per target language.
"""

__version__ = "1.0.0"
