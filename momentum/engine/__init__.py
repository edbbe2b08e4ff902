"""Momentum Engine — errors, configuration, clock and event logging."""
