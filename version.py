"""Version information for image-roi"""

__version__ = "0.3.1"
