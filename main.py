#!/usr/bin/env python3
"""
Main entry point for the Cross-Table Data Quality Agent
"""

from quality_agent.cli.main_cli import main

if __name__ == "__main__":
    main()
