"""HTTP surface for the digest service."""
