"""Ingestion — chunking, asset routing, embedding orchestration and the ingest pipeline."""
