"""
TrackBack - Lost and Found Item Matching Engine

Scores lost reports against found reports, stores the promising pairs as
reviewable matches, and drives their review lifecycle.
"""

__version__ = "0.1.0"
__author__ = "TrackBack Contributors"
