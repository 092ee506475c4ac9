"""Pure domain types for the procurement kernel.  ZERO I/O."""
