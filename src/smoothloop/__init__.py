"""
SmoothLoop Studio: image-to-video job client for a Modal-hosted ComfyUI API.

Submits batches of generation jobs, polls them to completion, and keeps a
capped local history of every attempt.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
