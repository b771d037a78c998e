"""Data models for cluster resources and reclamation runs."""
