"""Background worker running the lifecycle scheduler."""
