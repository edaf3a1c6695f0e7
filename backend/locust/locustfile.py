"""
Locust Load Test Suite

Needs an existing admin account (LOAD_ADMIN_EMAIL / LOAD_ADMIN_PASSWORD) to
schedule lessons and hand out credits.

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Race for the seats of one group lesson
  locust -f locustfile.py --tags throughput   # Cached lesson listing
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random
import uuid
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

ADMIN_EMAIL = os.environ.get("LOAD_ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.environ.get("LOAD_ADMIN_PASSWORD", "adminpassword")
PASSWORD = "loadtest-password"

# Shared state
LESSON_IDS = []
CONCURRENCY_LESSON_ID = None
ADMIN_HEADERS = {}


def random_email():
    return f"load_{uuid.uuid4().hex[:10]}@example.com"


def login(client, email, password):
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    if resp.status_code != 200:
        return {}
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def register_student(client):
    """Register a student, give them credits and return (user_id, headers)."""
    email = random_email()
    resp = client.post("/api/v1/auth/register", json={
        "email": email,
        "full_name": "Load Student",
        "password": PASSWORD,
    })
    if resp.status_code != 201:
        return None, {}
    user_id = resp.json()["id"]
    if ADMIN_HEADERS:
        client.post(
            "/api/v1/credits/add",
            json={"user_id": user_id, "amount": 50, "reason": "Load test credits"},
            headers=ADMIN_HEADERS,
        )
    return user_id, login(client, email, PASSWORD)


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: lessons are created by the first user that starts")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 students -> one group lesson with 10 seats

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT current_students FROM lessons WHERE id = X;             -- 10
      SELECT COUNT(*) FROM bookings WHERE lesson_id = X AND status = 'active';  -- 10
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        global CONCURRENCY_LESSON_ID
        if not ADMIN_HEADERS:
            ADMIN_HEADERS.update(login(self.client, ADMIN_EMAIL, ADMIN_PASSWORD))

        if CONCURRENCY_LESSON_ID is None and ADMIN_HEADERS:
            teacher = self.client.post("/api/v1/users/", json={
                "email": random_email(),
                "full_name": "Load Teacher",
                "password": PASSWORD,
                "role": "teacher",
            }, headers=ADMIN_HEADERS)
            if teacher.status_code == 201:
                start = datetime.now(timezone.utc) + timedelta(days=30)
                resp = self.client.post("/api/v1/lessons/", json={
                    "teacher_id": teacher.json()["id"],
                    "subject": "Concurrency test",
                    "kind": "group",
                    "start_time": start.isoformat(),
                    "end_time": (start + timedelta(hours=2)).isoformat(),
                    "max_students": 10,
                    "credits_cost": 1,
                }, headers=ADMIN_HEADERS)
                if resp.status_code == 201:
                    CONCURRENCY_LESSON_ID = resp.json()["id"]
                    LESSON_IDS.append(CONCURRENCY_LESSON_ID)
                    print(f"\nCreated lesson {CONCURRENCY_LESSON_ID} with 10 seats\n")

        _, self.headers = register_student(self.client)

    @tag("concurrency")
    @task
    def book_limited_seats(self):
        """All students fight for the same 10 seats."""
        if not CONCURRENCY_LESSON_ID or not self.headers:
            return

        with self.client.post("/api/v1/bookings/",
            json={"lesson_id": CONCURRENCY_LESSON_ID},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: full, duplicate or already cancelled
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        _, self.headers = register_student(self.client)

    @tag("throughput", "read")
    @task(10)
    def list_lessons_cached(self):
        page = random.randint(1, 5)
        self.client.get(f"/api/v1/lessons/?page={page}&page_size=20",
            headers=self.headers,
            name="/api/v1/lessons/ [cached]")

    @tag("throughput", "read")
    @task(3)
    def get_lesson_detail(self):
        if LESSON_IDS:
            self.client.get(f"/api/v1/lessons/{random.choice(LESSON_IDS)}",
                headers=self.headers,
                name="/api/v1/lessons/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        _, self.headers = register_student(self.client)

    @tag("edge")
    @task
    def invalid_lesson_id(self):
        with self.client.post("/api/v1/bookings/",
            json={"lesson_id": 999999},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def swap_same_lesson(self):
        with self.client.post("/api/v1/swaps/",
            json={"old_lesson_id": 1, "new_lesson_id": 1},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 409:
                resp.success()
            else:
                resp.failure(f"Expected 409, got {resp.status_code}")

    @tag("edge")
    @task
    def student_adds_credits(self):
        with self.client.post("/api/v1/credits/add",
            json={"user_id": 1, "amount": 100, "reason": "free credits"},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 403:
                resp.success()
            else:
                resp.failure(f"Expected 403, got {resp.status_code}")
