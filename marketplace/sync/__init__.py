"""Product catalog sync: coordinator, sync state model and stores."""
