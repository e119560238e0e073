"""Demo tools: weather lookup, price arithmetic and a simulated web search.

``default_registry()`` registers all three.
"""

import hashlib
import logging
import os
from typing import Literal
from urllib.parse import quote

import httpx

from toolloop.registry import ToolRegistry
from toolloop.tools import Tool, tool

logger = logging.getLogger(__name__)

VISUAL_CROSSING_URL = (
    "https://weather.visualcrossing.com/VisualCrossingWebServices/rest/"
    "services/timeline"
)


def make_weather_tool(
    api_key: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Tool:
    """Build ``get_current_weather`` backed by the Visual Crossing API.

    The key is read from ``VISUAL_CROSSING_API_KEY`` at call time when not
    given. Pass *http_client* to reuse a connection pool or to test.
    """

    @tool
    async def get_current_weather(
        location: str,
        unit: Literal["celsius", "fahrenheit"] = "fahrenheit",
    ):
        """Get the current weather in a given location.

        Args:
            location: The city and state, e.g. San Francisco, CA
            unit: The temperature unit to use.
        """
        key = api_key or os.getenv("VISUAL_CROSSING_API_KEY")
        if not key:
            raise RuntimeError("Missing VISUAL_CROSSING_API_KEY")

        url = f"{VISUAL_CROSSING_URL}/{quote(location, safe='')}"
        params = {
            "unitGroup": "metric" if unit == "celsius" else "us",
            "include": "current",
            "key": key,
        }
        if http_client is not None:
            res = await http_client.get(url, params=params)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                res = await client.get(url, params=params)
        if res.is_error:
            raise RuntimeError(f"Weather API error: {res.reason_phrase}")

        current = res.json()["currentConditions"]
        return {
            "location": location,
            "temperature": current.get("temp"),
            "unit": unit,
            "condition": current.get("conditions"),
            "humidity": current.get("humidity"),
            "wind_speed": current.get("windspeed"),
        }

    return get_current_weather


@tool
def calculate_total_price(price: float, quantity: int, tax_rate: float = 0.0):
    """Calculate the total price of a purchase including tax.

    Args:
        price: Unit price of the item.
        quantity: Number of items.
        tax_rate: Tax rate as a fraction, e.g. 0.08 for 8%.
    """
    if price < 0 or quantity < 0 or tax_rate < 0:
        raise ValueError("price, quantity and tax_rate must be non-negative")
    subtotal = round(price * quantity, 2)
    tax = round(subtotal * tax_rate, 2)
    return {
        "price": price,
        "quantity": quantity,
        "subtotal": subtotal,
        "tax": tax,
        "total": round(subtotal + tax, 2),
    }


@tool
def search_web(query: str, max_results: int = 3):
    """Search the web (simulated).

    Args:
        query: The search query.
        max_results: Maximum number of results to return.
    """
    digest = hashlib.sha1(query.encode()).hexdigest()
    count = max(0, min(max_results, 10))
    slug = quote(query.lower().replace(" ", "-"), safe="-")
    return {
        "query": query,
        "results": [
            {
                "title": f"{query} - result {i + 1}",
                "url": f"https://example.com/{slug}/{digest[i * 4:i * 4 + 4]}",
                "snippet": f"Simulated result {i + 1} for '{query}'.",
            }
            for i in range(count)
        ],
    }


def default_registry(
    api_key: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ToolRegistry:
    return ToolRegistry([
        make_weather_tool(api_key=api_key, http_client=http_client),
        calculate_total_price,
        search_web,
    ])
