"""Commerce order source."""
