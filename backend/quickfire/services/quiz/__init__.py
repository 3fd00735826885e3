"""Quiz domain services: scoring, powerups, sessions and anti-cheat.

This package contains the quiz mechanics imported by HTTP routes, socket
handlers and CLI commands, keeping transport concerns separated from the
session engine.
"""
