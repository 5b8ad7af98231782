"""
Local Admin Server — Web-based management interface.

Browser panel for the parish secretary: edit the site settings, load the
catechesis spreadsheet, publish to GitHub and follow the Pages build.

Usage:
    python -m catechesis_admin.admin
    # Opens browser to http://localhost:5050

Features:
    - Login with lockout and idle timeout
    - Settings editor with validation, backups and import/export
    - Roster upload, editing, reports and Excel export
    - GitHub connection, commit queue and deployment status
    - Operation log and public site analytics
"""

from .server import create_app, run_server

__all__ = ["create_app", "run_server"]
