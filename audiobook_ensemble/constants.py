"""All magic numbers and configuration constants."""

# Segmentation / matching
AGE_BRACKETS = ("0-12", "13-19", "20-35", "36-55", "56+")  # ordered
DEFAULT_AGE_BRACKET = "20-35"
DEFAULT_FALLBACK_ACCENT = "american"          # always passes the accent filter
NEUTRAL_SCORE = 0.5                           # tone score when either tag list is empty
NARRATOR = "narrator"                         # sentinel assignment name

# Default synthesis settings
DEFAULT_STABILITY = 0.65
DEFAULT_SIMILARITY_BOOST = 0.75
DEFAULT_STYLE = 0.5

# Generation
BATCH_SIZE = 10                     # units dispatched concurrently per batch
TTS_TIMEOUT_SECONDS = 60.0          # per synthesis call
CLONE_TIMEOUT_SECONDS = 120.0       # voice cloning gets a longer ceiling
TTS_RETRY_COUNT = 3                 # max transport retries inside a provider
TTS_RETRY_BASE_DELAY = 1.0          # seconds, doubled per retry
PLAYHT_POLL_ATTEMPTS = 30
PLAYHT_POLL_INTERVAL = 2.0          # seconds between job status polls
WORDS_PER_MINUTE = 150              # duration estimate when audio can't be measured
TTS_RATE = "-10%"                   # Edge speech rate: 10% slower than default
PRIMARY_PROVIDER = "elevenlabs"
FALLBACK_PROVIDER = "playht"

# Per-provider cost in dollars per 1000 characters
ELEVENLABS_COST_PER_1K = 0.30
PLAYHT_COST_PER_1K = 0.20
XTTS_COST_PER_1K = 0.0
EDGE_COST_PER_1K = 0.0

# Provider endpoints and models
ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
ELEVENLABS_MODEL_ID = "eleven_multilingual_v2"
PLAYHT_BASE_URL = "https://api.play.ht/api/v2"
XTTS_BASE_URL = "http://localhost:8000"

# Assembly
TARGET_LUFS = -23.0                 # EBU R128 integrated loudness
TRUE_PEAK_DB = -1.5                 # true-peak ceiling for loudnorm
LOUDNESS_RANGE = 11.0
OUTPUT_BITRATE = "128k"
OUTPUT_SAMPLE_RATE = 44100
OUTPUT_FORMATS = ("mp3", "m4b")
WORK_FORMAT = "wav"                 # intermediate format between normalize and encode

# Progress checkpoints (percent)
PROGRESS_ANALYZED = 5
PROGRESS_GENERATION_START = 10
PROGRESS_GENERATION_SPAN = 80
PROGRESS_FINALIZING = 95
PROGRESS_COMPLETE = 100

OUTPUT_DIR = "output"
VERSION = "0.1.0"
