"""Pydantic schemas for evaluator payloads and the HTTP API."""
