"""HTTP surface of the collection pipeline."""
