"""
apps/geminilive/backend/settings.py
===================================
Central place for every environment variable and constant used by the
Gemini Live relay service.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from src.gemini_live.api import DEFAULT_MODEL, DEFAULT_SETUP_TIMEOUT, GEMINI_LIVE_URL
from utils.ml_logging import get_logger

# Load environment variables from .env file
load_dotenv()
logger = get_logger("settings")

# ------------------------------------------------------------------------------
# Gemini Live
# ------------------------------------------------------------------------------
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
GEMINI_LIVE_ENDPOINT: str = os.getenv("GEMINI_LIVE_URL", GEMINI_LIVE_URL)
GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
SETUP_TIMEOUT_SECONDS: float = float(
    os.getenv("SETUP_TIMEOUT_SECONDS", str(DEFAULT_SETUP_TIMEOUT))
)

# Optional YAML file merged into the setup generationConfig
SESSION_CONFIG_PATH: str = os.getenv("SESSION_CONFIG_PATH", "")

# ------------------------------------------------------------------------------
# Voices
# ------------------------------------------------------------------------------
PREBUILT_VOICES: List[str] = [
    "Aoede", "Charon", "Fenrir", "Kore", "Puck", "Zephyr",
    "Achernar", "Achird", "Algenib", "Algieba", "Alnilam",
    "Autonoe", "Callirrhoe", "Despina", "Enceladus", "Erinome",
    "Gacrux", "Iapetus", "Laomedeia", "Leda", "Orus",
    "Pulcherrima", "Rasalgethi", "Sadachbia", "Sadaltager",
    "Schedar", "Sulafat", "Umbriel", "Vindemiatrix", "Zubenelgenubi",
]

VOICES: List[str] = [
    v.strip() for v in os.getenv("GEMINI_VOICES", "").split(",") if v.strip()
] or PREBUILT_VOICES
DEFAULT_VOICE: str = os.getenv("DEFAULT_VOICE", "Kore")

if DEFAULT_VOICE not in VOICES:
    logger.warning(f"DEFAULT_VOICE '{DEFAULT_VOICE}' is not in VOICES; falling back to '{VOICES[0]}'")
    DEFAULT_VOICE = VOICES[0]

DEFAULT_SYSTEM_PROMPT: str = os.getenv(
    "DEFAULT_SYSTEM_PROMPT", "You are a helpful assistant."
)

# ------------------------------------------------------------------------------
# Server
# ------------------------------------------------------------------------------
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "3600"))

ALLOWED_ORIGINS: List[str] = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()
]

STATIC_DIR: Path = Path(
    os.getenv("STATIC_DIR", str(Path(__file__).resolve().parent / "public"))
)

if not GEMINI_API_KEY:
    logger.warning("GEMINI_API_KEY is not set! Sessions will fail to start.")
