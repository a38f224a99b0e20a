"""Task graph orchestration with deterministic model selection."""

__version__ = "0.3.0"
