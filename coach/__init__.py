"""
Agentic Nutrition Coach: recommendation engine and rate-limited AI gateway.
"""

__version__ = "1.0.0"
