"""Community feed state layer: optimistic posts, comments and reactions over hosted backends."""

__version__ = "0.1.0"
