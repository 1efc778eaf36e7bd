"""
Locust Load Test Suite

Members of one organisation hammer the same program ticket balance.

Setup (seed data, then export):
  LOAD_TEST_MEMBER_IDS=1,2,3   # members of the same organisation
  LOAD_TEST_EVENT_ID=7         # program event with no external platform
  LOAD_TEST_PROGRAM=leadership   # no offer configured
  LOAD_TEST_TICKET_PRICE=10
  LOAD_TEST_ADMIN_EMAIL=admin@portal.test

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test overspending the balance
  locust -f locustfile.py --tags purchase     # Test concurrent top-ups
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests
"""

import os
import random

from locust import HttpUser, task, between, tag, events

from app.core.security import create_access_token

MEMBER_IDS = [int(m) for m in os.environ.get("LOAD_TEST_MEMBER_IDS", "1").split(",") if m.strip()]
EVENT_ID = int(os.environ.get("LOAD_TEST_EVENT_ID", "1"))
PROGRAM = os.environ.get("LOAD_TEST_PROGRAM", "leadership")
TICKET_PRICE = float(os.environ.get("LOAD_TEST_TICKET_PRICE", "10"))
ADMIN_EMAIL = os.environ.get("LOAD_TEST_ADMIN_EMAIL", "admin@portal.test")

# Shared state
PURCHASE_IDS = []


def random_email():
    return f"load_{random.randint(100000, 999999)}@test.com"


def member_headers():
    token = create_access_token(data={"sub": str(random.choice(MEMBER_IDS))})
    return {"Authorization": f"Bearer {token}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Members {MEMBER_IDS} booking event {EVENT_ID} ({PROGRAM})")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - many bookers, one balance

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify the balance never went negative and the ledger adds up:
      SELECT balance FROM program_ticket_balances WHERE program_tag = 'leadership';
      SELECT SUM(quantity) FROM program_ticket_transactions WHERE transaction_type = 'usage';
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = member_headers()

    @tag("concurrency")
    @task
    def book_one_place(self):
        with self.client.post(
            "/api/v1/booking",
            json={"eventId": EVENT_ID, "attendees": [{"email": random_email()}]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code in (400, 409):
                resp.success()  # Expected: balance exhausted or lost the race
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class PurchaseUser(HttpUser):
    """
    TEST 2: Concurrent purchases and admin cancellations on the same balance

    Run: locust -f locustfile.py --tags purchase -u 50 -r 10 --run-time 60s
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.headers = member_headers()

    @tag("purchase")
    @task(5)
    def buy_tickets(self):
        quantity = random.randint(1, 5)
        resp = self.client.post(
            "/api/v1/purchase",
            json={
                "programName": PROGRAM,
                "quantity": quantity,
                "accountAmount": quantity * TICKET_PRICE,
                "poToFollow": True,
            },
            headers=self.headers,
            name="/api/v1/purchase",
        )
        if resp.status_code == 201:
            PURCHASE_IDS.append(resp.json()["transaction_id"])

    @tag("purchase")
    @task(1)
    def cancel_some(self):
        if not PURCHASE_IDS:
            return
        with self.client.post(
            f"/api/v1/transactions/{random.choice(PURCHASE_IDS)}/cancel",
            json={"quantityToCancel": 1, "adminEmail": ADMIN_EMAIL},
            name="/api/v1/transactions/{id}/cancel",
            catch_response=True,
        ) as resp:
            if resp.status_code in (200, 400, 409):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("purchase")
    @task(1)
    def view_balances(self):
        self.client.get("/api/v1/organizations/me", headers=self.headers)

    @tag("purchase")
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
        self.headers = member_headers()

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_event_id(self):
        with self.client.post(
            "/api/v1/booking",
            json={"eventId": 999999, "attendees": [{"email": random_email()}]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def zero_quantity(self):
        with self.client.post(
            "/api/v1/purchase",
            json={"programName": PROGRAM, "quantity": 0},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def mismatched_payment(self):
        with self.client.post(
            "/api/v1/purchase",
            json={"programName": PROGRAM, "quantity": 2, "accountAmount": 1, "purchaseOrderNumber": "PO-X"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def huge_cancel(self):
        with self.client.post(
            "/api/v1/transactions/1/cancel",
            json={"quantityToCancel": 999999, "adminEmail": ADMIN_EMAIL},
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 404])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/booking",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/booking",
            json={"eventId": EVENT_ID, "attendees": [{"email": random_email()}]},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])
