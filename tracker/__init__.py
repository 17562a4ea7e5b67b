"""
tracker - Lightweight server for the Castelar tracker

Stores players and the match log in SQLite and serves standings over HTTP.
The phase engine lives in castelar.phases; the tracker only persists what
it returns.
"""

from .server import app
from .db import TrackerDB

__all__ = ["app", "TrackerDB"]
