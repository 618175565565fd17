"""Change detection and fan-out of snapshots to live subscribers."""
