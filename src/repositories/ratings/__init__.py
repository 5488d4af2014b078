"""Rating persistence: period/snapshot store and matchup discovery."""
