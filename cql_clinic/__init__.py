"""CQL Code Clinic: exercise engine and CQL sandbox client."""

__version__ = "1.0.0"
