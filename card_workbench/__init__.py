"""
Card Workbench - Character Card Segmentation and Backfill Toolkit

Reads SillyTavern character cards from JSON files or PNG metadata chunks,
splits their long text fields into bounded editing tasks, merges edited
text back, and writes the card out again without touching the image data.
"""

__version__ = "0.1.0"
