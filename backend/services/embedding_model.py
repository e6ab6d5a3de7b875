"""Embedding model integration with Hugging Face Inference API."""
import time
import logging
from typing import List
import httpx
import numpy as np
from config import HUGGINGFACE_API_KEY, EMBEDDING_MODEL, EMBED_TIMEOUT

logger = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Raised when a batch cannot be embedded as a whole."""


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Scale each row to unit length so cosine similarity is a dot product."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    if np.any(norms == 0):
        raise EmbeddingError("Embedding provider returned a zero vector")
    return vectors / norms


class EmbeddingModel:
    """
    Wrapper for Hugging Face Inference API embedding model.

    Vectors come back L2-normalized and in the same order as the input texts.
    A batch either embeds completely or raises EmbeddingError.
    """

    def __init__(
        self,
        api_key: str = HUGGINGFACE_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        max_retries: int = 5,
        initial_delay: float = 5.0,
        timeout: float = EMBED_TIMEOUT
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Hugging Face API key
            model_name: Model identifier (default: intfloat/multilingual-e5-small)
            max_retries: Maximum number of retry attempts for 503 errors
            initial_delay: Initial delay in seconds for exponential backoff
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("HUGGINGFACE_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.api_url = f"https://api-inference.huggingface.co/pipeline/feature-extraction/{model_name}"

        logger.info(f"Initialized EmbeddingModel with model: {model_name}")

    def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text string.

        Args:
            text: Text to embed

        Returns:
            Normalized embedding vector as list of floats

        Raises:
            ValueError: If text is empty
            EmbeddingError: If API request fails after all retries
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in a single API call.

        Args:
            texts: List of texts to embed

        Returns:
            List of normalized embedding vectors, one per input text

        Raises:
            ValueError: If texts list is empty or contains empty strings
            EmbeddingError: If API request fails or the response is misaligned
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        # Dropping blanks would shift every following vector
        empty = [i for i, t in enumerate(texts) if not t or not t.strip()]
        if empty:
            raise ValueError(f"Texts at positions {empty} are empty")

        raw = self._embed_with_retry(texts)
        vectors = self._to_matrix(raw, expected=len(texts))
        return l2_normalize(vectors).tolist()

    def _to_matrix(self, raw, expected: int) -> np.ndarray:
        """
        Convert the API payload into a (texts, dim) matrix.

        Feature-extraction models without a pooling head return per-token
        vectors; those are mean-pooled.
        """
        if not isinstance(raw, list) or len(raw) != expected:
            got = len(raw) if isinstance(raw, list) else type(raw).__name__
            raise EmbeddingError(f"Expected {expected} embeddings, got {got}")

        rows = []
        for item in raw:
            try:
                array = np.asarray(item, dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise EmbeddingError(f"Embedding is not a numeric array: {e}") from e
            if array.ndim == 2:
                array = array.mean(axis=0)
            elif array.ndim == 3 and array.shape[0] == 1:
                array = array[0].mean(axis=0)
            if array.ndim != 1 or array.size == 0:
                raise EmbeddingError(f"Unexpected embedding shape {array.shape}")
            rows.append(array)

        if len({row.shape[0] for row in rows}) != 1:
            raise EmbeddingError("Embeddings in batch have differing dimensions")

        return np.vstack(rows)

    def _embed_with_retry(self, texts: List[str]):
        """
        Internal method to call HF API with exponential backoff retry strategy.

        HF free tier models "sleep" and take 15-20s to load on first query.
        This implements aggressive retry with exponential backoff for 503 errors.

        Args:
            texts: List of texts to embed

        Returns:
            Decoded JSON payload from the API

        Raises:
            EmbeddingError: If API request fails after all retries
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        payload = {
            "inputs": texts,
            "options": {
                "wait_for_model": True  # Wait for model to load if sleeping
            }
        }

        delay = self.initial_delay
        last_error = None

        for attempt in range(self.max_retries):
            try:
                start_time = time.time()

                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(
                        self.api_url,
                        headers=headers,
                        json=payload
                    )

                elapsed = time.time() - start_time

                # Handle 503 Service Unavailable (model loading)
                if response.status_code == 503:
                    logger.warning(
                        f"Model loading (503) on attempt {attempt + 1}/{self.max_retries}. "
                        f"Retrying in {delay}s..."
                    )

                    if attempt < self.max_retries - 1:
                        time.sleep(delay)
                        delay = min(delay * 2, 60.0)  # Exponential backoff, max 60s
                        continue
                    else:
                        last_error = f"Model failed to load after {self.max_retries} attempts"
                        break

                # Handle rate limiting
                if response.status_code == 429:
                    logger.error("Rate limit exceeded for Hugging Face API")
                    raise EmbeddingError("Rate limit exceeded. Please try again later.")

                # Handle authentication errors
                if response.status_code == 401:
                    logger.error("Authentication failed for Hugging Face API")
                    raise EmbeddingError("Invalid API key")

                # Handle other errors
                if response.status_code != 200:
                    error_msg = f"API request failed with status {response.status_code}: {response.text}"
                    logger.error(error_msg)
                    raise EmbeddingError(error_msg)

                try:
                    embeddings = response.json()
                except ValueError as e:
                    logger.error(f"Embedding API returned invalid JSON: {e}")
                    raise EmbeddingError(f"Invalid JSON from embedding API: {e}") from e

                if elapsed > 10.0:
                    logger.info(
                        f"Model loading delay detected: {elapsed:.1f}s for {len(texts)} texts "
                        f"(attempt {attempt + 1})"
                    )
                else:
                    logger.debug(f"Generated embeddings for {len(texts)} texts in {elapsed:.2f}s")

                return embeddings

            except httpx.TimeoutException:
                last_error = f"Request timeout after {self.timeout}s"
                logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")

                if attempt < self.max_retries - 1:
                    time.sleep(delay)
                    delay = min(delay * 2, 60.0)
                    continue

            except httpx.RequestError as e:
                last_error = f"Network error: {str(e)}"
                logger.error(f"{last_error} on attempt {attempt + 1}/{self.max_retries}")

                if attempt < self.max_retries - 1:
                    time.sleep(delay)
                    delay = min(delay * 2, 60.0)
                    continue

        # All retries exhausted
        error_msg = f"Failed to generate embeddings after {self.max_retries} attempts. Last error: {last_error}"
        logger.error(error_msg)
        raise EmbeddingError(error_msg)

    def warmup(self) -> bool:
        """
        Warm up the model with a dummy query to avoid cold start delays.

        Returns:
            True if warmup successful, False otherwise
        """
        try:
            logger.info("Warming up embedding model...")
            start_time = time.time()

            self.embed_text("warmup query")

            elapsed = time.time() - start_time
            logger.info(f"Model warmup completed in {elapsed:.1f}s")
            return True

        except (EmbeddingError, ValueError) as e:
            logger.error(f"Model warmup failed: {str(e)}")
            return False
