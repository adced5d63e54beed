"""Small helpers shared by the plugin modules."""
