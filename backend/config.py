"""Configuration management for StudyDesk RAG."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Embedding service (Azure OpenAI text-embedding-3-large deployment)
AZURE_OPENAI_ENDPOINT = os.getenv(
    "AZURE_OPENAI_ENDPOINT",
    "https://localhost/openai/deployments/text-embedding-3-large/embeddings?api-version=2023-05-15"
)
AZURE_OPENAI_API_KEY = os.getenv("AZURE_OPENAI_API_KEY")

# Chat completion relay
CHAT_API_URL = os.getenv("CHAT_API_URL", "https://api.openai.com/v1/chat/completions")
CHAT_API_KEY = os.getenv("CHAT_API_KEY")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-3.5-turbo")

# Local corpus storage
CORPUS_DB_PATH = os.getenv("CORPUS_DB_PATH", "data/corpus.db")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Model Configuration
EMBEDDING_DIMENSIONS = 3072  # text-embedding-3-large output size
EMBEDDING_MAX_CONCURRENCY = int(os.getenv("EMBEDDING_MAX_CONCURRENCY", "8"))
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "30"))
CHAT_TIMEOUT = float(os.getenv("CHAT_TIMEOUT", "120"))

# Chunking Configuration
CHUNK_SIZE = 1000  # characters
CHUNK_OVERLAP = 100  # characters, approximated as CHUNK_OVERLAP / 5 words
MIN_CHUNK_LENGTH = 10

# Retrieval Configuration
TOP_K = 3
RELEVANCE_THRESHOLD = 0.3
FUZZY_THRESHOLD = 0.4  # maximum normalized match distance for lexical fallback

# Upload Configuration
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
