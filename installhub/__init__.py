"""InstallHub back-office application package."""
