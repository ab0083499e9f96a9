"""pushflight - single-flight rebuilds triggered by signed push webhooks"""
__version__ = "0.1.0"
