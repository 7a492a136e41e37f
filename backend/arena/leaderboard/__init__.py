"""Leaderboard read model: ranked store, response cache and coordination."""
