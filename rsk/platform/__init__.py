"""Host process helpers."""
