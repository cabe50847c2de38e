"""
Proposal Review API Models

Pydantic models for request validation and response serialization.
ORM models live in :mod:`proposal_review.models.db`.
"""
