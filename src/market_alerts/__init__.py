"""
market_alerts: polls quote providers, detects significant price moves per universe,
caches the results and serves them over HTTP.
"""

__version__ = "0.1.0"
