"""gitshift - isolated identity switching for Git hosting platforms."""

__version__ = "0.3.0"
