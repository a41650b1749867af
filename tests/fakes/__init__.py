"""In-memory stand-ins for the store, providers and completion sink."""
