"""Application package for the training portal backend.

This package exposes the grading and analytics core alongside the
service, repository and model modules used by the FastAPI application.
Individual modules contain the concrete implementations and documentation.
"""
