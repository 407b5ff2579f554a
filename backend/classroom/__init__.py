"""Real-time state synchronization core for the two-party classroom."""
