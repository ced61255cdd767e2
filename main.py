#!/usr/bin/env python3
"""
Google Drive Lookup - server launcher.

Run this file to start the lookup API (and the OAuth callback server when
OAuth is enabled):
    python3 main.py --oauth
"""

from __future__ import annotations

from gdrive_lookup.api.__main__ import main


if __name__ == "__main__":
    raise SystemExit(main())
