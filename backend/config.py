"""Configuration management for the help-center retrieval service."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Storage
DOCS_DIR = os.getenv("DOCS_DIR", "./docs")

# Corpus sources
DOCS_BASE_URL = os.getenv("DOCS_BASE_URL")
HELP_API_BASE_URL = os.getenv(
    "HELP_API_BASE_URL",
    "https://new-test-clen.esports.cz/api/help/list-local"
)
HELP_API_TOKEN = os.getenv("HELP_API_TOKEN")
HELP_API_LANGUAGE = os.getenv("HELP_API_LANGUAGE", "cs")
MAX_CRAWL_PAGES = int(os.getenv("MAX_CRAWL_PAGES", "200"))
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "30"))

# Partition name -> id_type understood by the help API
API_PARTITIONS = {
    "user": 1,
    "admin": 2,
}
# Partition fed by the markdown site crawler
SITE_PARTITION = "docs"

# API Keys
HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY")
ADMIN_KEY = os.getenv("ADMIN_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")

# Model Configuration
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "intfloat/multilingual-e5-small")
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "16"))
EMBED_TIMEOUT = float(os.getenv("EMBED_TIMEOUT", "120"))

# Chunking Configuration (word budgets)
HEADING_CHUNK_SIZE = 800
HEADING_CHUNK_OVERLAP = 120
PLAIN_CHUNK_SIZE = 300
PLAIN_CHUNK_OVERLAP = 50

# Retrieval Configuration
DEFAULT_TOP_K = 6
KEYWORD_TOP_N = 3
MIN_KEYWORD_LENGTH = 3

# Rate Limiting Configuration
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "20"))
RATE_LIMIT_WINDOW_MS = int(os.getenv("RATE_LIMIT_WINDOW_MS", str(10 * 60 * 1000)))
RATE_LIMIT_PRUNE_INTERVAL_S = float(os.getenv("RATE_LIMIT_PRUNE_INTERVAL_S", str(15 * 60)))

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
