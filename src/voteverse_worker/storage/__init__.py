"""SQLite engine, schema models and migrations runner."""
