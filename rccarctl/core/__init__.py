"""Connection, profile, dispatch and configuration core."""
