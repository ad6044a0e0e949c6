#!/usr/bin/env python3
"""
Personal Banking Entry Point

Starts the FastAPI server with the personal banking core.
"""

import sys

from personal_banking.api import run_server
from personal_banking.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Personal Banking API...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Personal Banking API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
