"""Team/User collaborator interface."""
