#!/usr/bin/env python3
"""
Wrapper script for mosaic compositing.
Makes it easier to run without the -m flag.

Usage:
    python warpblend_cli.py image1.jpg image2.jpg --mappings mappings.json
"""

import sys
from warpblend.panorama_cli import main

if __name__ == '__main__':
    sys.exit(main())
