"""Configuration management"""
import os
import platform
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", BASE_DIR / "data"))
LOG_DIR = Path(os.getenv("LOG_DIR", BASE_DIR / "logs"))
COOKIES_DIR = DATA_DIR / "cookies"
FAILURES_DIR = DATA_DIR / "failures"

system = platform.system()
if system == "Windows":
    DEFAULT_CHROME_BINARY = "C:/Program Files/Google/Chrome/Application/chrome.exe"
elif system == "Darwin":
    DEFAULT_CHROME_BINARY = "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"
else:
    DEFAULT_CHROME_BINARY = "google-chrome"

CHROME_BINARY = os.getenv("CHROME_BINARY") or DEFAULT_CHROME_BINARY
CHROME_REMOTE_HOST = os.getenv("CHROME_REMOTE_HOST", "127.0.0.1")
CHROME_EXTRA_ARGS = os.getenv("CHROME_EXTRA_ARGS", "--remote-allow-origins=* --disable-dev-shm-usage")
CHROME_HEADLESS = os.getenv("CHROME_HEADLESS", "false").lower() in {"1", "true", "yes"}
CHROME_STARTUP_TIMEOUT = float(os.getenv("CHROME_STARTUP_TIMEOUT", "40"))

# One persistent Chrome profile per logical user; holds the lifecycle markers too.
DEFAULT_PROFILE_DIR = Path(
    os.getenv("WEBCHAT_PROFILE_DIR", Path.home() / ".webchat-driver" / "browser-profile")
).expanduser()

CHATGPT_URL = os.getenv("CHATGPT_URL", "https://chatgpt.com/")
GEMINI_URL = os.getenv("GEMINI_URL", "https://gemini.google.com/app")

MCP_SERVER_NAME = os.getenv("MCP_SERVER_NAME", "Webchat Driver MCP")

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOG_DIR.mkdir(parents=True, exist_ok=True)
COOKIES_DIR.mkdir(parents=True, exist_ok=True)
FAILURES_DIR.mkdir(parents=True, exist_ok=True)
