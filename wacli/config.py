"""wacli Configuration"""

import os
from pathlib import Path

# Protocol gateway
SERVER_URL = os.environ.get("WACLI_SERVER_URL", "https://web.whatsapp-gateway.local")

# Seconds python-socketio waits for a send acknowledgement
SEND_TIMEOUT = float(os.environ.get("WACLI_SEND_TIMEOUT", "60"))

# Client descriptor announced at connect time
BROWSER = ("wacli", "Chrome", "1.0")

# Local credential folder, persisted between runs
AUTH_FOLDER = Path(os.environ.get("WACLI_AUTH_DIR", "auth"))
CREDS_DB_NAME = "creds.db"

# Addressing
JID_SUFFIX = "@s.whatsapp.net"

# Console
PROMPT = "> "
DEBUG = os.environ.get("WACLI_DEBUG", "false").lower() == "true"
