"""Agent selection, thread resolution and cross-channel relay."""
