"""Remote manifest and download client."""
