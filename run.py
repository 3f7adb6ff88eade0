#!/usr/bin/env python3
"""
Account Service Entry Point

Starts the FastAPI server with host and port taken from configuration.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from account_service.api import run_server
from account_service.config import get_config


if __name__ == "__main__":
    config = get_config()

    print("Starting Account Service...")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Account Service...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
