"""HTTP adapter for the guest payment core."""
