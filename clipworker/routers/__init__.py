"""
FastAPI routers for the clip worker.
"""

from clipworker.routers import health, jobs, worker

__all__ = ["health", "jobs", "worker"]
