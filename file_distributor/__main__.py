"""Entry point for File Distributor.

Usage:
    python -m file_distributor [run|init|check] [--config PATH]
"""

import sys


def main() -> None:
    """Delegate to the service CLI."""
    from file_distributor.service import main as service_main

    sys.exit(service_main())


if __name__ == "__main__":
    main()
