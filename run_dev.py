#!/usr/bin/env python3
"""
Development server runner with automatic reload.
"""

import os
import sys
import subprocess
from pathlib import Path


def main():
    """Run the development server."""
    if not Path(".env").exists():
        print("No .env file found, using default stability settings.")

    os.environ.setdefault("ENVIRONMENT", "development")
    os.environ.setdefault("LOG_LEVEL", "DEBUG")

    try:
        subprocess.run([
            sys.executable, "-m", "uvicorn",
            "app.main:app",
            "--host", "0.0.0.0",
            "--port", "8000",
            "--reload"
        ])
    except KeyboardInterrupt:
        print("\nShutting down development server...")


if __name__ == "__main__":
    main()
