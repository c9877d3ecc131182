"""Lyra payments REST API (FastAPI, deployed on AWS Lambda via Mangum)."""
