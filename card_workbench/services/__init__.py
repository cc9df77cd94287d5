"""Card workbench services."""
