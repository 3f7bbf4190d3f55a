#!/usr/bin/env python3
# Copyright (c) 2023-2025 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""Main entry point for the mcp-aggregator package."""

import sys

from mcp_aggregator.cli import main

if __name__ == "__main__":
    sys.exit(main())
