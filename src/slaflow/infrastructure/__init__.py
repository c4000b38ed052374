"""
Infrastructure Layer
=====================

Low-level technical concerns shared by both bounded contexts:
- Database connection management
"""
