"""
SQLite persistence for daily records and run metadata.

connection   : connection factory + ``get_connection()`` context manager
schema       : idempotent DDL
migrations   : sequential schema migrations (``schema_versions``)
repositories : explicit-SQL repositories speaking pydantic models
store        : ``RecordStore`` interface + ``SqliteRecordStore``
"""
