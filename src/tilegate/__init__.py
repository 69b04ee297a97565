"""Object-key resolution and content negotiation for generated map-tile trees."""

__version__ = "0.3.0"
