"""
peerdrop - Serverless LAN file drop

Push a set of files straight to another device on the same network,
or park them in a local content store and hand out a share link.
"""

__version__ = "1.0.0"
