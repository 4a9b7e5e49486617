"""
Cross-cutting concerns shared by every layer above the domain:
error-to-HTTP mapping, response hardening, rate limits and logging.
"""
