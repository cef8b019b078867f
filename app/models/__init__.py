"""SQLAlchemy models for Gridlock Prices."""

from app.models.token import Token

__all__ = ["Token"]
