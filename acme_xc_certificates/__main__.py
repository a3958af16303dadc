#!/usr/bin/env python3
"""
Entry point for running acme_xc_certificates as a module.
Usage: python -m acme_xc_certificates run -c config.json
"""

import sys

from acme_xc_certificates.cli import main

if __name__ == "__main__":
    sys.exit(main())
