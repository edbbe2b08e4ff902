"""Input records validated at the service boundary."""
