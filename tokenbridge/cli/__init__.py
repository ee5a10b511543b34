"""tokenbridge command-line tools."""
