"""
Deep Reader - Configuration
Feature flags, constants, and thresholds
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# =============================================================================
# PATHS
# =============================================================================
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(PROJECT_ROOT / "output")))
CHECKPOINT_DB_PATH = DATA_DIR / "checkpoints.db"
DIAGNOSTIC_LOG_PATH = LOGS_DIR / "diagnostic.log"

# =============================================================================
# VERSION
# =============================================================================
VERSION = "0.1.0"
PROJECT_NAME = "Deep Reader"

# =============================================================================
# LLM CONFIGURATION
# =============================================================================
# Anthropic (Claude)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")  # Orchestrating reader
ANTHROPIC_MODEL_DELEGATION = os.getenv("ANTHROPIC_MODEL_DELEGATION", "claude-haiku-4-5-20251001")  # Sub-readers
ANTHROPIC_MODEL_REWRITE = os.getenv("ANTHROPIC_MODEL_REWRITE", "claude-sonnet-4-5-20250929")  # Segment writers
ANTHROPIC_MAX_TOKENS = int(os.getenv("ANTHROPIC_MAX_TOKENS", "4096"))

# KoboldCpp (Local)
KOBOLD_API_URL = os.getenv("KOBOLD_API_URL", "http://127.0.0.1:5001")
KOBOLD_MAX_CONTEXT = int(os.getenv("KOBOLD_MAX_CONTEXT", "8192"))
KOBOLD_MAX_LENGTH = int(os.getenv("KOBOLD_MAX_LENGTH", "1024"))

# Routing
# Tool-driven loops always run on Anthropic; leaf generation follows the primary provider.
LLM_PRIMARY_PROVIDER = os.getenv("LLM_PRIMARY_PROVIDER", "anthropic")  # 'anthropic' or 'kobold'
LLM_FALLBACK_ENABLED = os.getenv("LLM_FALLBACK_ENABLED", "false").lower() == "true"

# API Retry
# Transient errors (500, 502, 503, timeouts) are retried inside the Anthropic client
API_RETRY_MAX_ATTEMPTS = 3                    # Max retries for transient API errors
API_RETRY_INITIAL_DELAY = 1.0                 # Initial backoff delay in seconds
API_RETRY_BACKOFF_MULTIPLIER = 2.0            # Exponential backoff multiplier

# Rate limits on leaf generation are retried by the router with linear backoff
RATE_LIMIT_MAX_ATTEMPTS = 3
RATE_LIMIT_BACKOFF_SECONDS = 5.0              # Delay grows as backoff * attempt

# =============================================================================
# TIMEOUTS (seconds)
# =============================================================================
LEAF_TIMEOUT_SECONDS = 120                    # Single segment rewrite
DELEGATE_TIMEOUT_SECONDS = 180                # Multi-chunk sub-reader
MERGE_TIMEOUT_SECONDS = 240                   # Chapter list consolidation
INTER_CALL_DELAY_SECONDS = 1.0                # Pause between sequential chapter passes

# =============================================================================
# DATABASE CONFIGURATION
# =============================================================================
DB_BUSY_TIMEOUT_MS = 10000
DB_MAX_RETRIES = 5
DB_RETRY_INITIAL_DELAY = 0.1
DB_RETRY_BACKOFF_MULTIPLIER = 2.0

# =============================================================================
# READING CONFIGURATION
# =============================================================================
# Chunking
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "2000"))
SENTENCE_SPLIT_MIN_RATIO = 0.5                # Sentence cut must land past this share of the window

# Coverage gate
READ_MIN_COVERAGE = 0.8                       # Default share of chunks that must be read
COVERAGE_GATE_MIN_CHUNKS = 10                 # Documents this small skip the coverage gate
MIN_OUTPUT_CHARS = 100
UNREAD_RANGE_DISPLAY_LIMIT = 5

# Chunk preview
CHUNK_PREVIEW_COUNT = 20
CHUNK_PREVIEW_CHARS = 50

# Loop ceilings
READER_MAX_ROUNDS = int(os.getenv("READER_MAX_ROUNDS", "150"))
READER_MAX_TOKENS = 8192
DELEGATE_MAX_TOKENS = 4096

# Sub-reader structured output
# "skip": drop malformed chapter blocks; "retry": re-issue the sub-reader call once
MALFORMED_BLOCK_POLICY = os.getenv("MALFORMED_BLOCK_POLICY", "skip")

# Session identity
DOCUMENT_ID_PREFIX_CHARS = 10000

# =============================================================================
# CHAPTER CONFIGURATION
# =============================================================================
CHAPTER_MERGE_CEILING = 30                    # Above this, run the span consolidation pass
CHAPTER_MIN_SPAN = 10                         # Chapters narrower than this (in chunks) merge forward
CHAPTER_NEIGHBOR_MIN_SPAN = 5                 # A following chapter narrower than this is absorbed
CHAPTER_LLM_MERGE_THRESHOLD = 10              # Above this, ask the model for a canonical list
CHAPTER_MIN_CHARS = 50
CHAPTER_SUMMARY_CHARS = 200
GLOBAL_CONTEXT_CHAPTERS = 10

# =============================================================================
# REWRITE CONFIGURATION
# =============================================================================
SEGMENT_SIZE = int(os.getenv("SEGMENT_SIZE", "1500"))
SEGMENT_BOUNDARY_RATIO = 0.6                  # Paragraph/sentence snap must land past this share
SEGMENT_PREVIEW_CHARS = 100
REWRITE_MAX_ROUNDS = int(os.getenv("REWRITE_MAX_ROUNDS", "100"))
WRITER_TEMPERATURE = 0.7
WRITER_FREQUENCY_PENALTY = 0.3
WRITER_PRESENCE_PENALTY = 0.3
WRITER_MAX_TOKENS = 4096

# =============================================================================
# CHECKPOINT CONFIGURATION
# =============================================================================
CHECKPOINT_ENABLED = os.getenv("CHECKPOINT_ENABLED", "true").lower() == "true"

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_TO_FILE = True
LOG_TO_CONSOLE = True
PROMPT_LOG_ENABLED = os.getenv("PROMPT_LOG_ENABLED", "true").lower() == "true"
PROMPT_LOG_PATH = LOGS_DIR / "api_prompts.jsonl"
