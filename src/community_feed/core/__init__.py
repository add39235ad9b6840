"""Core configuration for the community feed."""
