"""Closed vocabularies (StrEnums) shared by models, scoring and persistence."""
