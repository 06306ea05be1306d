"""
Bidding Load Test - Many bidders racing on one auction

This version:
1. Creates (or reuses, via AUCTION_ID) a single auction BEFORE the test starts
2. Gives every virtual user its own bidder id
3. Bids rise over time so most requests contend for the top spot
4. Rejections for a stale price (409 bid_too_low) are expected, not failures

Usage:
    locust -f locustfile.py --host http://localhost:8000
"""

import csv
import math
import os
import random
import time
import uuid
from datetime import datetime, timedelta, timezone

from locust import HttpUser, between, events, task

AUCTION_ID = os.environ.get("AUCTION_ID")
STARTING_PRICE = None
AUCTION_END_TIME = None  # Auction end timestamp
TEST_START_TIME = None  # Test start timestamp for bid price calculation
BID_LOG_FILE = None  # CSV file for detailed bid logging

# Codes that mean the service did its job and said no
EXPECTED_REJECTIONS = {"bid_too_low", "auction_closed"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """
    Called ONCE before the test starts.
    Create the auction under test and open the bid log.
    """
    global AUCTION_ID, STARTING_PRICE, AUCTION_END_TIME, TEST_START_TIME, BID_LOG_FILE

    TEST_START_TIME = time.time()

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = f"results_{timestamp}"
    os.makedirs(log_dir, exist_ok=True)
    BID_LOG_FILE = os.path.join(log_dir, "bid_requests.csv")

    with open(BID_LOG_FILE, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(
            [
                "timestamp",
                "elapsed_seconds",
                "bid_price",
                "status_code",
                "code",
                "response_time_ms",
            ]
        )

    print("\n" + "=" * 70)
    print("🔧 PRE-TEST SETUP")
    print("=" * 70)
    print(f"📊 Bid log file: {BID_LOG_FILE}")

    import requests

    base_url = environment.host

    if AUCTION_ID:
        print(f"\n1️⃣  Using existing auction {AUCTION_ID}...")
        response = requests.get(f"{base_url}/api/auctions/{AUCTION_ID}", timeout=10)
    else:
        duration = int(os.environ.get("AUCTION_DURATION_SECONDS", "300"))
        print(f"\n1️⃣  Creating auction ending in {duration}s...")
        end_time = datetime.now(timezone.utc) + timedelta(seconds=duration)
        response = requests.post(
            f"{base_url}/api/auctions",
            json={
                "title": "Load test lot",
                "seller_id": str(uuid.uuid4()),
                "starting_price": "100.00",
                "end_time": end_time.isoformat(),
            },
            timeout=10,
        )

    if response.status_code not in (200, 201):
        print(f"❌ Could not prepare auction: {response.status_code} {response.text}")
        return

    auction = response.json()
    AUCTION_ID = auction["id"]
    STARTING_PRICE = float(auction["current_price"])
    AUCTION_END_TIME = datetime.fromisoformat(
        auction["end_time"].replace("Z", "+00:00")
    ).timestamp()

    print("=" * 70)
    print("🚀 READY TO START - BIDDING TEST")
    print("=" * 70)
    print(f"   Auction ID: {AUCTION_ID}")
    print(f"   Current price: ${STARTING_PRICE}")
    print(f"   Ends: {auction['end_time']}")
    print("   💰 Bid prices will INCREASE over time")
    print("=" * 70 + "\n")


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Settle the auction and print the outcome"""
    if not AUCTION_ID:
        return

    import requests

    response = requests.post(
        f"{environment.host}/api/auctions/{AUCTION_ID}/settle", timeout=10
    )
    print(f"\n🏁 Settlement: {response.status_code} {response.text}")


class BiddingUser(HttpUser):
    """
    Virtual user that does nothing but bid.

    Bidding frequency increases exponentially as the deadline approaches.
    """

    wait_time = between(0.1, 0.3)

    def on_start(self):
        self.bidder_id = str(uuid.uuid4())

    def wait(self):
        """Exponential decay of the wait time, so RPS peaks at the deadline"""
        if AUCTION_END_TIME is None or TEST_START_TIME is None:
            super().wait()
            return

        current_time = time.time()
        if AUCTION_END_TIME - current_time <= 0:
            time.sleep(0.05)
            return

        elapsed_time = current_time - TEST_START_TIME
        total_duration = AUCTION_END_TIME - TEST_START_TIME

        max_wait = 3.0
        min_wait = 0.2

        k = math.log(max_wait / min_wait) / total_duration
        wait_seconds = max(min_wait, max_wait * math.exp(-k * elapsed_time))
        wait_seconds *= random.uniform(0.8, 1.2)

        time.sleep(wait_seconds)

    @task(95)
    def submit_bid(self):
        if not AUCTION_ID or STARTING_PRICE is None or not TEST_START_TIME:
            return

        elapsed_seconds = time.time() - TEST_START_TIME

        # Price increases by $0.5 per second plus some variance
        bid_price = STARTING_PRICE + elapsed_seconds * 0.5 + random.uniform(0, 20)
        bid_price = round(bid_price, 2)

        request_start = time.time()

        with self.client.post(
            f"/api/auctions/{AUCTION_ID}/bids",
            json={"bidder_id": self.bidder_id, "amount": f"{bid_price:.2f}"},
            name="🎯 BID",
            catch_response=True,
        ) as response:
            code = ""
            if response.status_code == 201:
                response.success()
            else:
                try:
                    code = response.json().get("code", "")
                except ValueError:
                    code = ""
                if code in EXPECTED_REJECTIONS:
                    response.success()
                else:
                    response.failure(f"Status code: {response.status_code} {code}")

            if BID_LOG_FILE:
                response_time = (time.time() - request_start) * 1000
                with open(BID_LOG_FILE, "a", newline="") as f:
                    csv.writer(f).writerow(
                        [
                            datetime.now().isoformat(),
                            round(elapsed_seconds, 2),
                            bid_price,
                            response.status_code,
                            code,
                            round(response_time, 2),
                        ]
                    )

    @task(5)
    def view_auction(self):
        if not AUCTION_ID:
            return

        self.client.get(f"/api/auctions/{AUCTION_ID}", name="📊 Auction detail")
