"""
Run the translation bridge.

Usage:
    python -m linguist_bridge

Joins MEETING_ROOM as BOT_IDENTITY and serves the control API on
http://0.0.0.0:8000 (CONTROL_API_PORT).
"""
from .agent import main

if __name__ == "__main__":
    main()
