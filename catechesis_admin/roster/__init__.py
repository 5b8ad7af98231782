"""
Roster Module — Catechesis spreadsheet parsing and export.
"""

from .excel import DEFAULT_HEADERS, Catechumen, RosterManager

__all__ = ["RosterManager", "Catechumen", "DEFAULT_HEADERS"]
