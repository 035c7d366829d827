"""Credential lifecycle service: registration, email verification, sessions and password recovery."""
