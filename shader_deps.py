#!/usr/bin/env python3
"""Command-line interface for the shader output dependency analyser."""

from __future__ import annotations

import sys

from shaderdeps.cli import main


if __name__ == "__main__":
    sys.exit(main())
