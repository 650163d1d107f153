"""dxmigrate — dependency-ordered migration between Directus instances."""

__version__ = "0.1.0"
