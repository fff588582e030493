"""
Models

- models.domain: dataclasses the services and repositories exchange
- models.api: Pydantic request/response schemas for the HTTP layer
"""
