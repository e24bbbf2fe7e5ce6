"""Records-portal search automation over remote Browserbase sessions."""

__version__ = "0.1.0"
