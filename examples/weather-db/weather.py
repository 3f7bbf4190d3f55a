#!/usr/bin/env python3
"""
Weather backend - forecast tool.

Simple MCP server exposing a single ``forecast`` tool.
"""

from mcp.server.fastmcp import FastMCP

mcp = FastMCP("weather-server")


@mcp.tool()
def forecast(city: str, days: int = 1) -> str:
    """Return a (canned) forecast for a city.

    Args:
        city: City name
        days: Number of days to forecast

    Returns:
        Forecast text
    """
    return f"{city}: sunny for the next {days} day(s)"


if __name__ == "__main__":
    mcp.run(transport="stdio")
