"""Participant-side sync core: transport channel, echo suppression and activity state."""
