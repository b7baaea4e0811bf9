"""
Product detection engine.

Orchestrates the detection pipeline:
    1. Extract the query image's FeatureRecord
    2. Compare it with every stored training-image record of each
       candidate product (best and average similarity)
    3. Compare it with the candidate's aggregated model, if trained
    4. Keep candidates above the confidence threshold, rank, trim

Each comparison signal is independent. A stored record with a missing
or corrupted sub-feature still contributes through the others, and a
candidate with nothing comparable is skipped rather than scored 0.
The engine only reads from the store.
"""

import logging
from typing import Any, Dict, List, Optional

from .features import extract_features_with_timeout
from .models import TrainingStatus
from .records import query_summary
from .scoring import (
    CONFIDENCE_THRESHOLD, MAX_MATCHES, combine_confidence,
    compare_features, rank_matches,
)
from .store import FeatureStore

logger = logging.getLogger(__name__)


class DetectionEngine:
    """
    Matches query images against every trained or partially trained product.

    Candidates are products with a completed aggregated model or at
    least one stored training-image FeatureRecord.
    """

    def __init__(self,
                 store: FeatureStore,
                 confidence_threshold: float = CONFIDENCE_THRESHOLD,
                 max_matches: int = MAX_MATCHES,
                 extraction_timeout: Optional[float] = None):
        """
        Args:
            store: Feature store to read products, records and models from.
            confidence_threshold: Matches must score strictly above this.
            max_matches: Maximum number of matches returned.
            extraction_timeout: Per-image extraction budget in seconds.
        """
        self.store = store
        self.confidence_threshold = confidence_threshold
        self.max_matches = max_matches
        self.extraction_timeout = extraction_timeout

    def score_candidate(self, query_features: dict, product_id: int) -> Optional[Dict[str, Any]]:
        """
        Score one candidate product against a query FeatureRecord.

        Returns:
            Dict with best_match, avg_similarity, model_similarity (None
            if there is no completed model) and confidence, or None when
            neither a record nor a model could be compared.
        """
        best_match = 0.0
        total_similarity = 0.0
        valid_comparisons = 0

        for record in self.store.get_feature_records(product_id):
            if not record:
                continue
            similarity = compare_features(query_features, record)
            total_similarity += similarity
            best_match = max(best_match, similarity)
            valid_comparisons += 1

        model_similarity = None
        model = self.store.get_model(product_id)
        if model and model["training_status"] == TrainingStatus.COMPLETED.value:
            average_features = (model.get("model_data") or {}).get("average_features")
            if average_features:
                model_similarity = compare_features(query_features, average_features)
                best_match = max(best_match, model_similarity)

        if valid_comparisons == 0 and model_similarity is None:
            logger.debug(f"Product {product_id}: nothing comparable, skipped")
            return None

        avg_similarity = total_similarity / valid_comparisons if valid_comparisons else 0.0
        return {
            "confidence": combine_confidence(best_match, avg_similarity, model_similarity),
            "best_match": best_match,
            "avg_similarity": avg_similarity,
            "model_similarity": model_similarity,
        }

    def match(self, query_features: dict) -> List[Dict[str, Any]]:
        """
        Rank catalog products against an already extracted query record.

        Returns:
            Up to max_matches match dicts sorted by confidence, each
            containing product, confidence, best_match, avg_similarity
            and, when a model was compared, model_similarity.
        """
        matches = []
        candidates = self.store.candidate_product_ids()

        for product_id in candidates:
            scores = self.score_candidate(query_features, product_id)
            if scores is None or scores["confidence"] <= self.confidence_threshold:
                continue

            product = self.store.get_product(product_id)
            if product is None:
                continue

            match = {"product": product, **scores}
            if match["model_similarity"] is None:
                del match["model_similarity"]
            matches.append(match)

        results = rank_matches(matches, self.max_matches)

        logger.info(
            f"Detection complete: {len(candidates)} candidates → "
            f"{len(matches)} above threshold, {len(results)} returned"
        )
        return results

    def detect(self, image_bytes: bytes) -> Dict[str, Any]:
        """
        Detect which catalog products a query image shows.

        Returns:
            Dict with 'matches' (possibly empty) and 'query_features'
            (the query's dimensions and shape features).

        Raises:
            ExtractionError: If the query image cannot be processed.
        """
        query_features = extract_features_with_timeout(image_bytes, timeout=self.extraction_timeout)
        return {
            "matches": self.match(query_features),
            "query_features": query_summary(query_features),
        }
