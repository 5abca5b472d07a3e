"""Integration harness for threshold randomness beacon networks."""
