#!/usr/bin/env python3
"""
Database backend - query tool.

Simple MCP server running SQL against an in-memory SQLite database.
"""

import sqlite3

from mcp.server.fastmcp import FastMCP

mcp = FastMCP("database-server")

connection = sqlite3.connect(":memory:")
connection.executescript(
    """
    CREATE TABLE cities (name TEXT, country TEXT);
    INSERT INTO cities VALUES ('Paris', 'FR'), ('Taipei', 'TW'), ('Lima', 'PE');
    """
)


@mcp.tool()
def query(sql: str) -> list[list]:
    """Run a read-only SQL query.

    Args:
        sql: SELECT statement

    Returns:
        Result rows
    """
    if not sql.lstrip().lower().startswith("select"):
        raise ValueError("Only SELECT statements are allowed")
    return [list(row) for row in connection.execute(sql).fetchall()]


if __name__ == "__main__":
    mcp.run(transport="stdio")
