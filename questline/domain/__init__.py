"""Questline domain layer."""
