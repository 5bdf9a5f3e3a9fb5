"""
Event ingestion pipeline.

Jobs flow scheduler -> queue -> worker; the worker drives a registered
source through authenticate, fetch, transform, dedup and persist, and
writes one fetch-history row per execution.
"""
