"""Core domain package for chatvault.

Core contains archiving, correlation and retention logic without any chat
network or delivery-specific code, keeping the business logic portable.
"""
