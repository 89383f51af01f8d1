"""Pipeline services: mapping, projection, reconciliation, execution, control."""
