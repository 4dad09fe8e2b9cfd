#!/usr/bin/env python3
"""
Main entry point for the search bot.
"""

import sys

from searchbot.app import main


if __name__ == '__main__':
    sys.exit(main())
