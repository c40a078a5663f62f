#!/usr/bin/env python3
"""
Wallet Ledger Entry Point

Starts the FastAPI server with host and port taken from WALLET_* settings.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from wallet_ledger.api import run_server
from wallet_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Wallet Ledger...")
    print(f"Database: {config.database_url}")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print()

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            debug=config.env == "development" and "--reload" in sys.argv
        )
    except KeyboardInterrupt:
        print("\nShutting down Wallet Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
