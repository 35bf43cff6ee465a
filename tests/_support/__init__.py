"""Test support utilities for agenda-core."""
