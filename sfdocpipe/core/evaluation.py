import json
import logging
from typing import List, Dict, Any, Optional

from ..components.embedders import BaseEmbedder
from ..components.stores import BaseVectorStore
from ..utils.data_models import SearchResult

logger = logging.getLogger(__name__)


class Evaluator:
    """
    Evaluates retrieval quality of the vector store against a dataset of
    questions whose answers are known to live on a given page.
    """

    def __init__(self, embedder: BaseEmbedder, store: BaseVectorStore):
        """
        Initializes the Evaluator.

        Args:
            embedder: The embedder to use for generating query vectors. It must
                be the same model that produced the stored vectors.
            store: The vector store to search.
        """
        self.embedder = embedder
        self.store = store

    def search(
        self, query: str, k: int, metadata_filter: Optional[Dict[str, Any]] = None
    ) -> List[SearchResult]:
        """
        Embeds a query and returns the k most similar stored documents.
        """
        query_vector = self.embedder.embed_query(query)
        return self.store.search(query_vector, k=k, metadata_filter=metadata_filter)

    def evaluate(self, dataset_path: str, k: int = 5) -> Dict[str, Any]:
        """
        Evaluates the store on a JSONL dataset.

        Each line holds {"question": ..., "expected_url": ...} and optionally a
        "filter" mapping applied to the search.

        Args:
            dataset_path: The path to the evaluation dataset.
            k: The number of results to retrieve for each query.

        Returns:
            A dictionary containing the evaluation results (hit_rate, total_questions, hits).
        """
        logger.info(f"Starting evaluation for dataset: '{dataset_path}'")

        with open(dataset_path, "r") as f:
            eval_data = [json.loads(line) for line in f if line.strip()]

        hit_count = 0
        for item in eval_data:
            question = item["question"]
            expected_url = item["expected_url"]

            search_results = self.search(question, k, item.get("filter"))

            for result in search_results:
                if result.document.metadata.get("source_url") == expected_url:
                    logger.debug(
                        f"Found expected URL '{expected_url}' for question '{question}'"
                    )
                    hit_count += 1
                    break

        if not eval_data:
            hit_rate = 0.0
        else:
            hit_rate = (hit_count / len(eval_data)) * 100

        logger.info(
            f"Evaluation Finished. Hit Rate: {hit_rate:.2f}% ({hit_count}/{len(eval_data)})"
        )
        return {
            "hit_rate": hit_rate,
            "total_questions": len(eval_data),
            "hits": hit_count,
        }
