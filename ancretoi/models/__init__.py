"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations and relationships.
"""

from ancretoi.models.user import PasswordReset, Theme, User, UserRole
from ancretoi.models.program import (
    DayState,
    Enrollment,
    EnrollmentStatus,
    Program,
    ProgramLevel,
    ProgramStatus,
)
from ancretoi.models.blog import Category, Post, PostStatus
from ancretoi.models.newsletter import NewsletterSubscriber, SubscriberStatus

__all__ = [
    # User
    "User",
    "UserRole",
    "Theme",
    "PasswordReset",
    # Programs
    "Program",
    "ProgramStatus",
    "ProgramLevel",
    "Enrollment",
    "EnrollmentStatus",
    "DayState",
    # Blog
    "Category",
    "Post",
    "PostStatus",
    # Newsletter
    "NewsletterSubscriber",
    "SubscriberStatus",
]
