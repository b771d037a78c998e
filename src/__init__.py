"""AWS Cluster Reaper - dependency-ordered cleanup of AWS cluster environments."""

__version__ = "0.3.0"
