"""
External collaborator clients.

exercise_catalog : read-only HTTP client for the exercise catalog service,
                   used only for cosmetic recommendation enrichment.
"""
