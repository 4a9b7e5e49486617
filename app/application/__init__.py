"""
Application layer package.

Use cases sit between the HTTP/CLI surfaces and the domain: they fan
out to signal sources, run the engine, persist and publish results.
One class per use case, one public ``execute`` method. Only domain
ports are imported here.
"""
