#!/usr/bin/env python3
"""
MiniBank Entry Point

Starts the FastAPI server with the MiniBank ledger.
"""

import sys

from minibank.api import run_server
from minibank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting MiniBank...")
    print(f"Database: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down MiniBank...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
