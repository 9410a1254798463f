"""Pure domain helpers shared by engines, config and services."""
