"""Sensor time-series ingestion, range queries and live window merging."""
