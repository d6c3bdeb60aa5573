"""Explicit-SQL repositories for the daily record store."""
