#!/usr/bin/env python3
"""Entry point for Investment Risk Analytics."""

from risk_analytics.cli import main

if __name__ == "__main__":
    main()
