"""Engine defaults and fixed values shared across modules."""

# Chunking and scheduling
DEFAULT_BATCH_SIZE = 5
DEFAULT_CONCURRENCY = 10
DEFAULT_INTER_WAVE_PACE_SECONDS = 0.0
MAX_INTER_WAVE_PACE_SECONDS = 60.0

# Retry budgets
DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_RATE_LIMIT_ATTEMPTS = 6
DEFAULT_SALVAGE_ATTEMPTS = 2

# Backoff (seconds)
DEFAULT_RETRY_BASE_DELAY = 0.4
DEFAULT_RATE_LIMIT_BASE_DELAY = 2.0
DEFAULT_RETRY_MAX_DELAY = 60.0
DEFAULT_REQUEST_TIMEOUT = 120.0

# Completion service
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TOKEN_BUDGET_HINT = 8000

# Quality thresholds for free-text explanations
MIN_EXPLANATION_CHARS = 120
MIN_SENTENCE_MARKS = 3
MIN_NON_EMPTY_LINES = 4
MAX_EXPLANATION_SENTENCES = 4

# Progress windows (percent)
PREPARE_PROGRESS_START = 0
PREPARE_PROGRESS_END = 10
SCHEDULER_PROGRESS_END = 85
ENHANCE_PROGRESS_END = 90
MERGE_PROGRESS_END = 100

# Sessions
DEFAULT_SESSION_TTL_SECONDS = 30 * 60
STOP_MESSAGE = "Stopped by user"

# Placeholders
PLACEHOLDER_OPTION = "Option A"
PLACEHOLDER_MCQ_ANSWER = "?"
PLACEHOLDER_FREE_ANSWER = "À préciser"
OPTION_LETTERS = "ABCDE"
