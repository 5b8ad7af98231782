"""
Analytics Module — Visit tracking for the public site.
"""

from .tracker import VisitTracker, generate_visitor_id

__all__ = ["VisitTracker", "generate_visitor_id"]
