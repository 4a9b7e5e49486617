"""
Application layer for the recommendation bounded context.

Use cases coordinate signal collection, the domain engine and the
feedback tracker. No framework or infrastructure imports allowed.
"""
