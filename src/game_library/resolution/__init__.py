"""
Library entry resolution.
"""

from game_library.resolution.pipeline import ResolutionOutcome, ResolutionPipeline
from game_library.resolution.single_flight import SingleFlight

__all__ = [
    "ResolutionOutcome",
    "ResolutionPipeline",
    "SingleFlight",
]
