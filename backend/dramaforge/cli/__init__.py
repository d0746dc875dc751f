"""Command-line interface (``dramaforge``)."""
