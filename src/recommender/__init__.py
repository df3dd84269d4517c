# ABOUTME: Groups feature extraction and the online scoring model behind recommendations.
# ABOUTME: Re-exports the extractor, model and snapshot types.

from .features import CachedFeatureExtractor, CourseVector, FeatureExtractor, LearnerVector
from .model import ModelSnapshot, RecommendationModel
from .prior import PopulationPrior

__all__ = [
    "CachedFeatureExtractor",
    "CourseVector",
    "FeatureExtractor",
    "LearnerVector",
    "ModelSnapshot",
    "RecommendationModel",
    "PopulationPrior",
]
