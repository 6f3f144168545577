"""Declarative base shared by all Storywright models."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
