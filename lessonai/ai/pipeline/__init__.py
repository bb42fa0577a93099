"""Pipeline contracts."""
