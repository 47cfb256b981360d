"""Orders service for the food-delivery marketplace."""
