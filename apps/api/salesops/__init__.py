"""Sales-ops CRM ingestion service."""
