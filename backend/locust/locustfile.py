"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags issuance   # Same-user ticket bursts
  locust -f locustfile.py --tags churn      # Drive the cache past its purge threshold
  locust -f locustfile.py --tags edge       # Test bad input
  locust -f locustfile.py                   # All tests
"""

import random
import string

from locust import HttpUser, between, tag, task

# Shared state
TAX_CODES = []
TICKET_IDS = []


def random_tax_code():
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=14))


def register(client):
    tax_code = random_tax_code()
    resp = client.post("/api/v1/users/", json={
        "tax_code": tax_code,
        "name": f"Rider {tax_code[:4]}",
        "contact": f"{tax_code.lower()}@load.test",
    }, name="/api/v1/users/")
    if resp.status_code == 201:
        TAX_CODES.append(tax_code)
        return tax_code
    return None


class IssuanceUser(HttpUser):
    """
    TEST 1: Issuance bursts for a single rider

    Run: locust -f locustfile.py --tags issuance -u 100 -r 50 --run-time 30s

    After test, verify for any rider:
      total_tickets in the users table == tickets issued with 201
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.tax_code = register(self.client)

    @tag("issuance")
    @task(5)
    def issue_ticket(self):
        if not self.tax_code:
            return
        with self.client.post("/api/v1/tickets/",
            json={"tax_code": self.tax_code, "route_id": "R1", "trip_id": f"T{random.randint(1, 50)}"},
            name="/api/v1/tickets/",
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                TICKET_IDS.append(resp.json()["ticket"]["ticket_id"])
                resp.success()
            elif resp.status_code in (500, 503):
                resp.failure(f"Transient failure: {resp.status_code}")
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("issuance")
    @task(2)
    def read_ticket(self):
        if TICKET_IDS:
            self.client.get(f"/api/v1/tickets/{random.choice(TICKET_IDS)}",
                name="/api/v1/tickets/{id}")

    @tag("issuance")
    @task(1)
    def read_user_tickets(self):
        if self.tax_code:
            self.client.get(f"/api/v1/users/{self.tax_code}/tickets",
                name="/api/v1/users/{tax_code}/tickets")


class ChurnUser(HttpUser):
    """
    TEST 2: Cache churn

    Run with a low threshold to watch full purges happen:
      MAX_CACHED_USERS=50 uvicorn transit_ticketing.main:app
      locust -f locustfile.py --tags churn -u 50 -r 10 --run-time 60s

    Compare latency right after each purge (cold cache) with steady state,
    and watch cache_purges_total on /metrics.
    """
    wait_time = between(0.1, 0.5)

    @tag("churn")
    @task(2)
    def register_rider(self):
        register(self.client)

    @tag("churn", "read")
    @task(10)
    def read_rider(self):
        if TAX_CODES:
            self.client.get(f"/api/v1/users/{random.choice(TAX_CODES)}",
                name="/api/v1/users/{tax_code}")

    @tag("churn")
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

    @tag("edge")
    @task
    def unknown_rider_ticket(self):
        with self.client.post("/api/v1/tickets/",
            json={"tax_code": random_tax_code(), "route_id": "R1", "trip_id": "T1"},
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_tax_code(self):
        with self.client.get("/api/v1/users/bad-code",
            catch_response=True
        ) as resp:
            if resp.status_code == 400:
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def expired_or_unknown_ticket(self):
        with self.client.get("/api/v1/tickets/00000000-0000-0000-0000-000000000000",
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/tickets/",
            data="not json at all",
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")
