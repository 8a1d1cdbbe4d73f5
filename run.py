#!/usr/bin/env python3
"""
Custody Ledger Entry Point

Starts the FastAPI server with limits and collaborators taken from
CUSTODY_* environment variables (see custody_ledger/config.py).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from custody_ledger.api import run_server
from custody_ledger.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Custody Ledger...")
    print(f"Withdraw limit: {config.withdraw_limit}  Bank cap: {config.bank_cap}")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Custody Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
