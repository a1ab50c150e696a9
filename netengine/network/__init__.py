"""Network model, per-unit system, connectivity, validation and Y-bus construction."""
