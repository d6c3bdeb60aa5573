"""Alert policy: decide and append rate-limited stress alerts."""
