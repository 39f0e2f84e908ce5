"""
Face Match Application

A face-identity matching service using:
- Cosine similarity over pre-computed 256-dim face vectors
- SQLAlchemy (async) for face records and access logs
- FastAPI for RESTful API
"""

__version__ = "1.0.0"
