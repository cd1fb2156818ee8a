"""Shared building blocks: domain exceptions, leveling formulas, service base."""
