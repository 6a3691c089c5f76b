"""Models Package - immutable domain types shared across the gateway."""
