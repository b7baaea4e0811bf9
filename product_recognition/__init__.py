"""
product_recognition — Image-feature product matching and model training.

Fingerprints product photos with color histograms, gradient edge
statistics, local-variance texture and binary-mask shape descriptors,
aggregates each product's fingerprints into a centroid model, and ranks
catalog products against query images.

Modules:
    engine             DetectionEngine: ranks products for a query image
    features           FeatureRecord extraction entry point
    histograms         RGB histogram extraction + intersection
    edges              Gradient-magnitude statistics
    texture            3x3 local-variance statistics
    shape_descriptors  Hole detection and outline metrics
    preprocessing      Decoding, cover-fit resize, grayscale
    scoring            Weighted multi-signal similarity
    training           Model aggregation and training-image management
    batch_training     Bulk import from an image directory
    store              FeatureStore interface + SQLAlchemy implementation
    api                FastAPI application
"""

__version__ = "1.0.0"
