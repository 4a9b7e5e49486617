"""
SignalFusion: multi-source trading signal fusion and recommendation engine.

Application package root. This is a modular monolith using
hexagonal architecture (ports & adapters) with domain-driven design.

Bounded contexts:
    - recommendation: Signal collection, ensemble fusion, conflict
      resolution, risk-adjusted sizing and performance feedback.

Layers:
    - domain: Pure business logic, entities, ports (ABCs), errors.
    - application: Use cases, DTOs, orchestration.
    - infrastructure: Adapters (stores, streams, analysis sources) implementing domain ports.
    - interfaces: FastAPI routers, Pydantic schemas.
    - shared: Cross-cutting concerns (errors, security, logging).
"""
