"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention   # Concurrent join/leave on one event
  locust -f locustfile.py --tags throughput   # Test cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import random
import string
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

# Shared state
EVENT_IDS = []
CONTENTION_EVENT_ID = None
PASSWORD = "loadtest123"


def random_email():
    return f"load_{random.randint(10000, 99999)}@test.com"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=8))


def future_date(days=30):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def sign_up(client):
    """Register a throwaway account and return auth headers ({} on failure)."""
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": PASSWORD,
    })
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    if resp.status_code != 200:
        return {}
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: first contention user creates the shared event")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - every user toggles attendance on the same event

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify no user is listed twice:
      SELECT user_id, COUNT(*) FROM event_attendees
      WHERE event_id = X GROUP BY user_id HAVING COUNT(*) > 1;
    Should return no rows.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = sign_up(self.client)
        self.attending = False

        if self.headers and not CONTENTION_EVENT_ID:
            resp = self.client.post("/api/v1/events",
                json={
                    "name": f"Contention Event {random_username()}",
                    "description": "Everyone joins and leaves",
                    "date": future_date(),
                    "location": "Load Lab",
                },
                headers=self.headers,
            )
            if resp.status_code == 201:
                globals()["CONTENTION_EVENT_ID"] = resp.json()["id"]
                print(f"\n✓ Created contention event {CONTENTION_EVENT_ID}\n")

    @tag("contention")
    @task
    def toggle_attendance(self):
        """Join if not attending, otherwise leave."""
        if not CONTENTION_EVENT_ID or not self.headers:
            return

        url = f"/api/v1/events/{CONTENTION_EVENT_ID}/attend"
        request = self.client.delete if self.attending else self.client.post
        with request(url, headers=self.headers, catch_response=True,
                     name="/api/v1/events/{id}/attend") as resp:
            if resp.status_code == 200:
                self.attending = not self.attending
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: retries exhausted under contention
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("contention")
    @task
    def double_join(self):
        """Joining twice must be rejected, never duplicated."""
        if not CONTENTION_EVENT_ID or not self.headers or not self.attending:
            return

        with self.client.post(f"/api/v1/events/{CONTENTION_EVENT_ID}/attend",
            headers=self.headers,
            catch_response=True,
            name="/api/v1/events/{id}/attend [duplicate]",
        ) as resp:
            if resp.status_code in [400, 409]:
                resp.success()
            else:
                resp.failure(f"Expected 400/409, got {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare avg response time, requests/sec and P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_events_cached(self):
        page = random.randint(1, 5)
        resp = self.client.get(f"/api/v1/events?page={page}&page_size=20",
            name="/api/v1/events [cached]")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])

    @tag("throughput", "read")
    @task(3)
    def get_event_detail(self):
        if EVENT_IDS:
            event_id = random.choice(EVENT_IDS)
            self.client.get(f"/api/v1/events/{event_id}", name="/api/v1/events/{id}")

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
        self.headers = sign_up(self.client)

    @tag("edge")
    @task
    def join_missing_event(self):
        with self.client.post("/api/v1/events/999999/attend",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def leave_without_joining(self):
        if not EVENT_IDS:
            return
        with self.client.delete(f"/api/v1/events/{random.choice(EVENT_IDS)}/attend",
            headers=self.headers,
            catch_response=True,
            name="/api/v1/events/{id}/attend [not member]",
        ) as resp:
            if resp.status_code in [400, 404]:
                resp.success()
            else:
                resp.failure(f"Expected 400/404, got {resp.status_code}")

    @tag("edge")
    @task
    def past_event(self):
        with self.client.post("/api/v1/events",
            json={"name": "Too late", "date": "2000-01-01T00:00:00Z", "location": "Nowhere"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/events",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/events/1/attend", catch_response=True) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly browsing, some join/leave, rare creates.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = sign_up(self.client)
        self.joined = set()

    @task(50)
    def browse_events(self):
        resp = self.client.get("/api/v1/events?page=1&page_size=20")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])

    @task(20)
    def view_event(self):
        if EVENT_IDS:
            self.client.get(f"/api/v1/events/{random.choice(EVENT_IDS)}", name="/api/v1/events/{id}")

    @task(10)
    def join_event(self):
        if not EVENT_IDS or not self.headers:
            return
        event_id = random.choice(EVENT_IDS)
        resp = self.client.post(f"/api/v1/events/{event_id}/attend",
            headers=self.headers, name="/api/v1/events/{id}/attend")
        if resp.status_code == 200:
            self.joined.add(event_id)

    @task(5)
    def leave_event(self):
        if not self.joined:
            return
        event_id = self.joined.pop()
        self.client.delete(f"/api/v1/events/{event_id}/attend",
            headers=self.headers, name="/api/v1/events/{id}/attend")

    @task(2)
    def create_event(self):
        if not self.headers:
            return
        resp = self.client.post("/api/v1/events",
            json={
                "name": f"Meetup {random_username()}",
                "description": "Load generated",
                "date": future_date(random.randint(1, 90)),
                "location": "Somewhere",
            },
            headers=self.headers,
        )
        if resp.status_code == 201:
            EVENT_IDS.append(resp.json()["id"])
