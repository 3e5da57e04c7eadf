"""DebateLens: rhetorical analysis of debates from text, media files or video URLs."""

__version__ = "0.1.0"
