"""Portfolio allocation engine."""
