#!/usr/bin/env python3
"""
Arch Linux Base Installer

This script installs a minimal Arch Linux system from the live ISO onto a
single disk.
"""

import sys
from archbase.main import main

if __name__ == "__main__":
    sys.exit(main())
