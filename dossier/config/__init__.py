"""Configuration and secret loading."""
