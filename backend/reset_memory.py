import os
import sys

import requests
from dotenv import load_dotenv

# Optional: Load from .env
load_dotenv()
BASE_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "demo-user-123")

RESET_CHAT_URL = f"{BASE_URL}/chat"


def reset_conversation(user_id: str) -> bool:
    try:
        response = requests.delete(RESET_CHAT_URL, params={"userId": user_id}, timeout=10)
        response.raise_for_status()
        body = response.json()
        print(f"{'✅' if body.get('reset') else '❌'} {body.get('message', 'OK')} ({user_id})")
        return bool(body.get("reset"))
    except requests.exceptions.RequestException as e:
        print("❌ Failed to reset conversation:", str(e))
        return False


if __name__ == "__main__":
    user_ids = sys.argv[1:] or [DEFAULT_USER_ID]
    results = [reset_conversation(user_id) for user_id in user_ids]
    sys.exit(0 if all(results) else 1)
