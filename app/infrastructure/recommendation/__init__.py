"""
Infrastructure adapters for the recommendation bounded context.

Each adapter implements a domain port (ABC) and connects to external
systems: analysis services, market data, storage and streaming.
"""
