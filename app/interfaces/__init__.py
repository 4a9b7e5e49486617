"""
Interfaces layer package.

FastAPI routers and their Pydantic schemas. Routes validate input,
call one use case and map its DTO onto a response model.
"""
