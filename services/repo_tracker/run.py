#!/usr/bin/env python3
"""
Repository Tracker Service Entry Point

This script starts the tracker with both listeners, reopening the most
recently tracked repository when there is one.
"""

import asyncio

from services.repo_tracker.main import main as run_service


def main():
    """Start the Repository Tracker service."""
    asyncio.run(run_service(resume=True))


if __name__ == "__main__":
    main()
