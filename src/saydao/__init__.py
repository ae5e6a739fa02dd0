"""SayDAO — membership, meeting polls and attendance-token distribution."""

__version__ = "0.1.0"
