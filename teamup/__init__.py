"""TeamUp — student team formation and roster reconciliation."""
