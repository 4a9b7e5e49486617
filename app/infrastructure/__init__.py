"""
Infrastructure layer package.

Adapters behind the domain ports: analysis-service wrappers, the
in-memory market collaborators, the SQL audit store, the realtime
stream and the outcome monitor.
"""
