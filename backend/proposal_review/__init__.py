"""
Proposal Review Backend Package

FastAPI backend for research-proposal submission, reviewer assignment and
evaluation, including:

- main.py: FastAPI application factory
- auth.py: Session tokens, password hashing and principal resolution
- security.py: Middleware, route access gate and error handlers
- services/: Proposal lifecycle, reviewer assignment and evaluation logic
"""

__version__ = "1.0.0"
