"""
Repository Tracker Service for GitFlow Live.

This service is responsible for:
- Loading a bounded baseline of a repository's commit graph
- Detecting commits, merges, checkouts and pushes as they happen
- Deduplicating the two racing detection channels
- Streaming baselines, change events and advisories to subscribers
"""

__version__ = "1.0.0"
__author__ = "GitFlow Live Team"
__description__ = "Live Git repository change tracking service"
