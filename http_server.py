#!/usr/bin/env python3
"""
TubeSync HTTP Server Runner
"""

import os

from dotenv import load_dotenv

from tubesync.crosscutting.logging import setup_logging
from tubesync.interfaces.http import HTTPServer


def main():
    """Run the HTTP server."""
    load_dotenv()
    setup_logging(os.getenv('TUBESYNC_LOG_LEVEL', 'INFO'))
    server = HTTPServer(
        host=os.getenv('TUBESYNC_HOST', 'localhost'),
        port=int(os.getenv('TUBESYNC_PORT', '3000')),
        debug=os.getenv('TUBESYNC_DEBUG', '0') == '1'
    )
    server.run()


if __name__ == '__main__':
    main()
