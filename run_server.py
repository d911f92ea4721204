#!/usr/bin/env python3
"""
Server Runner Script

Simple script to run the bingo server.
This provides an easy way to start the server during development.

Usage:
    python run_server.py
"""

import asyncio
import sys
import os

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Import the main function
from bingo.main import main

if __name__ == "__main__":
    print("Starting bingo server...")

    # Settings fall back to defaults without a .env file
    if not os.path.exists(".env"):
        print("No .env file found, using default settings (SQLite at bingo.db, port 3000)")

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nServer stopped by user")
    except Exception as e:
        print(f"\nServer failed to start: {e}")
        print("Check your configuration and try again")
        sys.exit(1)
