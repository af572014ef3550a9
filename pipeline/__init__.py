"""Pipeline components.

This package contains the field extractor, the query engine builder, the
per-record transform and the stdin -> PostgreSQL -> stdout orchestrator.
"""
