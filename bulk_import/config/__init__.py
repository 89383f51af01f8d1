"""Pipeline configuration (YAML + JSON schema)."""
