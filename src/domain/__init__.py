"""Domain models and pure logic for the wallet dashboard.

Pydantic models describe wallet assets, price quotes and yield opportunities.
Filtering and valuation here never touch the network so that the aggregation
pipeline in ``services`` can be tested against plain data.
"""

__all__ = [
    "assets",
    "token_filters",
    "valuation",
    "yields",
]
