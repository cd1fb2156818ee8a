"""
Declarative base shared by every Questline ORM row.
"""

from __future__ import annotations

from sqlalchemy.orm import declarative_base

Base = declarative_base()
