"""Configuration, errors, logging and shared infrastructure."""
