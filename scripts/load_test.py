"""
Load Testing Script

Tests API behaviour under concurrent callers using Locust.
Run with: locust -f scripts/load_test.py --host=http://localhost:8000

Free callers hit the daily limit after a few messages, so 429s are expected
and counted as successes here; anything else non-200 is a failure.
"""
from locust import HttpUser, task, between
import random
import uuid


MESSAGES = [
    ("advice", "He left me on read for two days after a great date, what do I do?"),
    ("advice", "My ex keeps watching my stories but we're in no contact"),
    ("rizz", "How do I text this girl from the gym without being weird?"),
    ("strategy", "We're in a situationship and it's hot and cold, I want clarity"),
    ("advice", "I found out he cheated and I don't know if I want closure or to leave"),
    ("advice", "I keep overthinking every text and want to double text"),
]


class CoachUser(HttpUser):
    """Simulates one anonymous caller with its own session token."""

    wait_time = between(1, 3)  # Wait 1-3 seconds between requests

    def on_start(self):
        self.session_id = uuid.uuid4().hex[:24]
        self.headers = {"x-session-id": self.session_id}

    @task(4)
    def ask_for_advice(self):
        mode, message = random.choice(MESSAGES)
        with self.client.post(
            "/api/advice",
            json={"message": message, "mode": mode, "sessionId": self.session_id},
            headers=self.headers,
            name="/api/advice",
            catch_response=True,
        ) as response:
            if response.status_code == 429 and response.json().get("code") in ("DAILY_LIMIT", "WEEKLY_LIMIT"):
                response.success()
            elif response.status_code != 200:
                response.failure(f"Unexpected status {response.status_code}")
            elif not response.json().get("coach", {}).get("reply"):
                response.failure("Empty coach reply")

    @task(2)
    def check_entitlements(self):
        self.client.get(
            "/api/me/entitlements",
            params={"sessionId": self.session_id},
            headers=self.headers,
            name="/api/me/entitlements",
        )

    @task(1)
    def health_check(self):
        self.client.get("/health")
