"""User-facing operations on daily records (mood, wellbeing, completion, alerts, history)."""
