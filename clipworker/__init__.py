"""
Clip worker - asynchronous clip generation for content projects.
"""

__version__ = "1.0.0"
