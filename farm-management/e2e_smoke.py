#!/usr/bin/env python3
"""
End-to-end smoke test against a running farm service.

Run:
  python farm-management/e2e_smoke.py

Optional env:
  FARM_BASE=http://localhost:8000
  TIMEOUT_SECONDS=30
  DEBUG=1

Every run creates its own farms, users and stock (ids carry a random
suffix), so it can be pointed at a shared deployment.
"""

import os
import sys
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List

import requests


# =========================
# Simple CLI UI (ANSI)
# =========================

class Style:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


def section_title(text: str):
    line = "─" * (len(text) + 2)
    print(f"\n{Style.BLUE}┌{line}┐{Style.RESET}")
    print(f"{Style.BLUE}│ {Style.BOLD}{text}{Style.RESET}{Style.BLUE} │{Style.RESET}")
    print(f"{Style.BLUE}└{line}┘{Style.RESET}")


def info(msg: str):
    print(f"{Style.CYAN}ℹ {msg}{Style.RESET}")


def ok(msg: str):
    print(f"{Style.GREEN}✔ {msg}{Style.RESET}")


def fail(msg: str):
    print(f"{Style.RED}✘ {msg}{Style.RESET}")


# =========================
# Config
# =========================

FARM_BASE = os.getenv("FARM_BASE", "http://localhost:8000")
TIMEOUT_SECONDS = int(os.getenv("TIMEOUT_SECONDS", "30"))
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}

RUN = uuid.uuid4().hex[:6]
FARM_A = f"ferme-a-{RUN}"
FARM_B = f"ferme-b-{RUN}"
ADMIN_A = f"admin-a-{RUN}"
ADMIN_B = f"admin-b-{RUN}"
ITEM = f"Gloves {RUN}"
INITIAL_QUANTITY = 10


def debug(msg: str):
    if DEBUG:
        print(f"{Style.GRAY}… {msg}{Style.RESET}")


@dataclass
class CheckResult:
    name: str
    success: bool
    details: str = ""


# =========================
# HTTP helpers
# =========================

def http(method: str, path: str, user: str = None, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", 8)
    if user:
        kwargs.setdefault("headers", {})["X-User-Id"] = user
    debug(f"{method} {path} kwargs={kwargs}")
    return requests.request(method, FARM_BASE + path, **kwargs)


def expect(resp: requests.Response, status: int, ctx: str) -> Dict[str, Any]:
    if resp.status_code != status:
        raise AssertionError(f"{ctx}: expected HTTP {status}, got {resp.status_code}, body={resp.text}")
    return resp.json()


def wait_for_health(timeout: int) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        try:
            if http("GET", "/").status_code == 200:
                ok("farm_service is healthy.")
                return True
        except requests.exceptions.RequestException as e:
            debug(f"farm_service not ready: {e}")
        time.sleep(1)
    fail(f"farm_service did not become healthy in {timeout} seconds.")
    return False


def quantity_at(ferme_id: str) -> int:
    items = expect(http("GET", "/api/v1/stock/items", params={"ferme_id": ferme_id, "search": ITEM}), 200, "list stock")
    return sum(s["quantity"] for s in items if s["item"] == ITEM)


def new_transfer(quantity: int) -> requests.Response:
    stock = expect(http("GET", "/api/v1/stock/items", params={"ferme_id": FARM_A, "search": ITEM}), 200, "list stock")[0]
    return http(
        "POST", "/api/v1/transfers", user=ADMIN_A,
        json={"stock_item_id": stock["id"], "to_ferme_id": FARM_B, "quantity": quantity},
    )


def check(name: str, fn) -> CheckResult:
    section_title(name)
    try:
        details = fn()
        ok(details)
        return CheckResult(name, True, details)
    except Exception as e:
        fail(str(e))
        return CheckResult(name, False, str(e))


# =========================
# Scenarios
# =========================

def seed() -> str:
    expect(http("POST", "/api/v1/fermes", json={"id": FARM_A, "nom": f"Ferme A {RUN}", "admins": [ADMIN_A]}), 201, "create farm A")
    expect(http("POST", "/api/v1/fermes", json={"id": FARM_B, "nom": f"Ferme B {RUN}", "admins": [ADMIN_B]}), 201, "create farm B")
    expect(http("POST", "/api/v1/users", json={"uid": ADMIN_A, "role": "admin", "ferme_id": FARM_A}), 201, "create admin A")
    expect(http("POST", "/api/v1/users", json={"uid": ADMIN_B, "role": "admin", "ferme_id": FARM_B}), 201, "create admin B")
    expect(http("POST", "/api/v1/stock/items", user=ADMIN_A, json={"item": ITEM, "quantity": INITIAL_QUANTITY}), 200, "seed stock")
    return f"{FARM_A} holds {quantity_at(FARM_A)} x {ITEM}"


def scenario_confirm() -> str:
    transfer = expect(new_transfer(4), 201, "create transfer")
    info(f"Transfer {transfer['tracking_number']} is {transfer['status']}")
    confirmed = expect(http("POST", f"/api/v1/transfers/{transfer['id']}/confirm", user=ADMIN_B), 200, "confirm")
    a, b = quantity_at(FARM_A), quantity_at(FARM_B)
    if (confirmed["status"], a, b) != ("delivered", 6, 4):
        raise AssertionError(f"Expected delivered with A=6, B=4; got {confirmed['status']} with A={a}, B={b}")
    expect(http("POST", f"/api/v1/transfers/{transfer['id']}/confirm", user=ADMIN_B), 409, "second confirm")
    return f"Delivered once: A={a}, B={b}"


def scenario_reject() -> str:
    transfer = expect(new_transfer(2), 201, "create transfer")
    rejected = expect(
        http("POST", f"/api/v1/transfers/{transfer['id']}/reject", user=ADMIN_B, json={"reason": "Not needed"}),
        200, "reject",
    )
    a, b = quantity_at(FARM_A), quantity_at(FARM_B)
    if (rejected["status"], a, b) != ("rejected", 6, 4):
        raise AssertionError(f"Expected stock unchanged at A=6, B=4; got A={a}, B={b}")
    return f"Rejected ({rejected['rejection_reason']}), stock unchanged"


def scenario_insufficient_stock() -> str:
    body = expect(new_transfer(INITIAL_QUANTITY * 5), 409, "oversized transfer")
    return body["error"]


def scenario_aggregate() -> str:
    rows = expect(http("GET", "/api/v1/stock/aggregate", params={"search": ITEM}), 200, "aggregate")
    total = rows[0]["total_quantity"] if rows else None
    if total != INITIAL_QUANTITY or len(rows[0]["farms"]) != 2:
        raise AssertionError(f"Expected {INITIAL_QUANTITY} across 2 farms, got {rows}")
    return f"{ITEM}: {total} across {len(rows[0]['farms'])} farms"


def scenario_worker_conflict() -> str:
    cin = f"E2E{RUN}".upper()
    expect(http("POST", "/api/v1/workers", user=ADMIN_A, json={"nom": "Said", "cin": cin, "ferme_id": FARM_A}), 201, "register in A")
    body = expect(http("POST", "/api/v1/workers", user=ADMIN_B, json={"nom": "Said", "cin": cin, "ferme_id": FARM_B}), 409, "register in B")
    return f"Blocked: {body['error']} (recipients={body['conflict']['recipients']})"


# =========================
# Summary
# =========================

def print_results(results: List[CheckResult]) -> int:
    print(f"\n{Style.BOLD}================ SMOKE RESULTS ================{Style.RESET}")
    for r in results:
        color = Style.GREEN if r.success else Style.RED
        print(f"{color}{'✅' if r.success else '❌'} {r.name}{Style.RESET}")
        if r.details:
            print(f"    {Style.DIM}{r.details}{Style.RESET}")
    failed = sum(1 for r in results if not r.success)
    print(f"Total: {len(results)}  |  Passed: {Style.GREEN}{len(results) - failed}{Style.RESET}  |  Failed: {Style.RED}{failed}{Style.RESET}\n")
    return failed


def main():
    if not wait_for_health(TIMEOUT_SECONDS):
        sys.exit(1)

    results = [check("Seed farms and stock", seed)]
    if results[0].success:
        results.append(check("Transfer confirmed once", scenario_confirm))
        results.append(check("Transfer rejected", scenario_reject))
        results.append(check("Insufficient stock refused", scenario_insufficient_stock))
        results.append(check("Aggregated stock", scenario_aggregate))
        results.append(check("Worker duplicate blocked", scenario_worker_conflict))

    sys.exit(1 if print_results(results) else 0)


if __name__ == "__main__":
    main()
