"""Questline core infrastructure: config, logging, events, database, retries."""
