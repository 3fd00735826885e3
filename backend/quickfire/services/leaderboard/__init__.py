"""Leaderboard services: period windows, snapshot aggregation, archive/reset."""
