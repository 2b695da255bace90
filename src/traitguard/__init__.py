"""
Traitguard -- Character trait consistency enforcement for LLM role-play.

Traitguard sits between a free-text generator and the user. Every response is
scanned for attempted changes to a character's locked-in attributes, each
change is scored and checked against protection rules, and rejected changes
trigger a bounded correction loop before the text is returned.
"""

from traitguard._version import __version__

__author__ = "Traitguard Team"

__all__ = ["__version__"]
