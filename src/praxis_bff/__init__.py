"""
Praxis Backend-For-Frontend.

Signed cookie sessions, CSRF double-submit protection and WorkOS directory
access for the Praxis administrative UI.
"""

__version__ = "0.1.0"
