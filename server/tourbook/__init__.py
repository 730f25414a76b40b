"""Tour booking financial-consistency engine."""
