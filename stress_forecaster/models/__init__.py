"""Pydantic domain models: daily records, predictions, recommendations, alerts."""
