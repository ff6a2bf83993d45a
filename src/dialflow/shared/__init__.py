"""Shared infrastructure: database, logging, exceptions, time."""
