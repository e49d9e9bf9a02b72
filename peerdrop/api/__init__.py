"""
API Module - REST share API over the content store
"""

from .rest import create_app, run_api_server

__all__ = ['create_app', 'run_api_server']
