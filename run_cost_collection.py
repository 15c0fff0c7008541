#!/usr/bin/env python3
"""
Azure subscription cost collection job
Entry point for schedulers that run a script rather than the console command
"""

from azure_cost_collector.core import main

if __name__ == "__main__":
    main()
