"""
livefeed - threaded live feed over social media posts.
"""
__version__ = "0.1.0"
