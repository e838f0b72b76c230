"""Version parsing and resolution."""
