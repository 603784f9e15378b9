# Base class for Scheduling database models
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all scheduling ORM models."""

    pass
