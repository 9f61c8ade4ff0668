"""Declarative base shared by all Sidequest models."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
