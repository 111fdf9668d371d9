"""Shared contracts for the RentKenya session core.

Provides the Pydantic boundary models (sessions, user identities, profiles),
the environment-backed Settings, and the error types used by every package.
"""
