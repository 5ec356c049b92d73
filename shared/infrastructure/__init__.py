"""Infrastructure: correlation, database, CRUD collaborator adapters."""
