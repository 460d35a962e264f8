"""Feature inference engine: turns extracted evidence into a scored feature catalog."""
