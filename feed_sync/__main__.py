"""Main module for feed_sync.

This module allows the CLI to be run as a Python module using:
python -m feed_sync

It delegates to the server application's main function.
"""

import sys

from feed_sync.server.app import main

if __name__ == "__main__":
    sys.exit(main())
