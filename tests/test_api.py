"""
Tests for the HTTP surface.
"""
import time

import jwt
import pytest
from fastapi.testclient import TestClient

from sealedswap.api import create_app
from sealedswap.config import DEFAULT_PROGRAM_ID, Settings
from sealedswap.engine import SwapEngine
from sealedswap.exceptions import ExecutionFailed
from sealedswap.hashing import hash_intent
from sealedswap.quotes import QuoteClient
from sealedswap.relay_queue import RelayQueue
from sealedswap.version import __version__
from conftest import AMOUNT_IN, TEST_QUOTE_URL, TOKEN_IN, TOKEN_OUT, USDT, make_meta, make_route, sign_hash

JWT_SECRET = "operator-secret-for-the-api-tests-0123456"


def _engine(chain, store, sessions, user_keypair, **settings):
    settings.setdefault("env_tier", "test")
    settings.setdefault("relay_delay_seconds", 0)
    return SwapEngine(
        chain,
        store,
        sessions,
        RelayQueue(store, workers=2, backoff_base=0.01),
        QuoteClient(TEST_QUOTE_URL, retry_count=0),
        settings=Settings(**settings),
        extra_signers=[user_keypair],
    )


@pytest.fixture
def engine(chain, store, sessions, user_keypair):
    return _engine(chain, store, sessions, user_keypair)


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as test_client:
        yield test_client


@pytest.fixture
def intent_body(user_keypair, relayer_keypair):
    return {
        "route": make_route(),
        "tradeMeta": make_meta(user_keypair.pubkey(), relayer_keypair.pubkey()),
    }


def _create(client, body):
    response = client.post("/swap/intent", json=body)
    assert response.status_code == 200, response.text
    return response.json()


def _commit(client, created, **extra):
    body = {
        "intentHash": created["hash"],
        "nonce": created["intent"]["nonce"],
        "expiry": created["intent"]["expiry"],
    }
    body.update(extra)
    return client.post("/swap/commit/simple", json=body)


def _error(response):
    return response.json()["error"]


def test_health(client, chain):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"] == {"database": "connected", "solana": "connected", "queue": "healthy"}
    assert body["version"] == __version__

    chain.healthy = False
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["services"]["solana"] == "unavailable"


def test_info(client):
    body = client.get("/api/info").json()
    assert body["name"] == "sealedswap"
    assert body["programId"] == DEFAULT_PROGRAM_ID
    assert body["environment"] == "test"
    assert body["endpoints"]["reveal"] == "POST /swap/reveal"


def test_quote(client, requests_mock):
    requests_mock.get(TEST_QUOTE_URL, json=make_route())
    response = client.post("/swap/quote", json={"fromMint": TOKEN_IN, "toMint": TOKEN_OUT, "amount": AMOUNT_IN})
    assert response.status_code == 200
    assert response.json()["outAmount"] == "99000000"


def test_quote_upstream_failure(client, requests_mock):
    requests_mock.get(TEST_QUOTE_URL, status_code=502)
    response = client.post("/swap/quote", json={"fromMint": TOKEN_IN, "toMint": TOKEN_OUT, "amount": AMOUNT_IN})
    assert response.status_code == 503
    error = _error(response)
    assert error["code"] == "QUOTE_UNAVAILABLE"
    assert error["details"] is None
    assert error["timestamp"].endswith("Z")


@pytest.mark.parametrize("body,fragment", [
    ({"fromMint": TOKEN_IN, "toMint": TOKEN_OUT}, "amount"),
    ({"fromMint": TOKEN_IN, "toMint": TOKEN_OUT, "amount": 1, "extra": True}, "extra"),
])
def test_request_body_validation(client, body, fragment):
    response = client.post("/swap/quote", json=body)
    assert response.status_code == 400
    error = _error(response)
    assert error["code"] == "VALIDATION_ERROR"
    assert any(line.startswith(fragment) for line in error["details"])


def test_create_intent(client, store, intent_body):
    created = _create(client, intent_body)
    assert created["hash"] == hash_intent(created["intent"])
    assert created["intent"]["amountIn"] == AMOUNT_IN
    assert store.require(created["hash"]).status.value == "draft"
    assert created.get("sessionRecovery") is None


def test_create_intent_route_mismatch(client, intent_body):
    intent_body["route"] = make_route(output_mint=USDT)
    response = client.post("/swap/intent", json=intent_body)
    assert response.status_code == 400
    assert _error(response)["code"] == "ROUTE_MISMATCH"


def test_create_intent_lists_violations(client, intent_body):
    intent_body["tradeMeta"].update(amountIn=0, minOut=-1, relayerFee=-5)
    response = client.post("/swap/intent", json=intent_body)
    assert response.status_code == 400
    assert len(_error(response)["details"]) >= 3


def test_commit_and_status(client, chain, intent_body):
    created = _create(client, intent_body)
    response = _commit(client, created)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "committed"
    assert body["relayQueued"] is False
    assert chain.sent[-1][0] == "commit"

    status = client.get(f"/swap/status/{created['hash'].upper()}").json()
    assert status["status"] == "committed"
    assert status["commit"]["tx"] == body["tx"]
    assert status["reveal"] is None
    assert status["isExpired"] is False
    assert 0 < status["timeRemainingSeconds"] <= 3600


def test_second_commit_conflicts(client, intent_body):
    created = _create(client, intent_body)
    first = _commit(client, created).json()
    response = _commit(client, created)
    assert response.status_code == 409
    error = _error(response)
    assert error["code"] == "ALREADY_COMMITTED"
    assert error["existingRef"] == first["tx"]


def test_commit_with_relay_queues_check(client, engine, intent_body):
    created = _create(client, intent_body)
    body = _commit(client, created, enableRelay=True).json()
    assert body["relayQueued"] is True
    jobs = engine.relay.jobs_for(created["hash"])
    assert len(jobs) == 1
    assert engine.relay.wait(jobs[0].id, 5)


def test_commit_unknown_intent(client):
    response = client.post("/swap/commit/simple", json={"intentHash": "ab" * 32, "nonce": 1, "expiry": 1})
    assert response.status_code == 404
    assert _error(response)["code"] == "INTENT_NOT_FOUND"


def test_commit_invalid_hash(client):
    response = client.post("/swap/commit/simple", json={"intentHash": "xyz", "nonce": 1, "expiry": 1})
    assert response.status_code == 400


def test_reveal(client, chain, user_keypair, intent_body):
    created = _create(client, intent_body)
    _commit(client, created)
    chain.fund(user_keypair.pubkey(), TOKEN_IN, AMOUNT_IN)

    response = client.post("/swap/reveal", json={
        "intent": created["intent"],
        "expectedHash": created["hash"],
        "signature": sign_hash(user_keypair, created["hash"]),
    })
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["execution"] == {"amountOut": 99_000_000, "protocolFee": 100_000, "relayerFee": 1000}
    assert body["fees"] == {"liquidity": 50_000, "protocol": 30_000, "bounty": 20_000}

    status = client.get(f"/swap/status/{created['hash']}").json()
    assert status["status"] == "revealed"
    assert status["reveal"]["tx"] == body["transaction"]
    assert status["fees"] == body["fees"]


def test_reveal_tampered_intent(client, user_keypair, intent_body):
    created = _create(client, intent_body)
    _commit(client, created)
    tampered = dict(created["intent"], minOut=1)
    response = client.post("/swap/reveal", json={
        "intent": tampered,
        "expectedHash": created["hash"],
        "signature": sign_hash(user_keypair, created["hash"]),
    })
    assert response.status_code == 422
    assert _error(response)["code"] == "HASH_MISMATCH"


def test_reveal_before_commit(client, user_keypair, intent_body):
    created = _create(client, intent_body)
    response = client.post("/swap/reveal", json={
        "intent": created["intent"],
        "expectedHash": created["hash"],
        "signature": sign_hash(user_keypair, created["hash"]),
    })
    assert response.status_code == 400
    assert _error(response)["code"] == "NOT_COMMITTED"


def test_status_errors(client):
    assert client.get(f"/swap/status/{'cd' * 32}").status_code == 404
    response = client.get("/swap/status/not-a-hash")
    assert response.status_code == 400
    assert _error(response)["code"] == "VALIDATION_ERROR"


def test_session_lifecycle(client, user_keypair, intent_body):
    intent_body["sessionId"] = "browser-tab-1"
    created = _create(client, intent_body)
    assert created["sessionRecovery"]["sessionId"] == "browser-tab-1"

    recovered = client.get("/swap/recover/browser-tab-1").json()
    assert recovered["recovered"] is True
    assert recovered["data"]["hash"] == created["hash"]

    new_route = make_route(out_amount=98_000_000)
    assert client.patch("/swap/session/browser-tab-1", json={"route": new_route}).json() == {"updated": True}
    recovered = client.get("/swap/recover/browser-tab-1").json()
    assert recovered["data"]["route"]["outAmount"] == "98000000"

    listed = client.get(f"/swap/sessions/{user_keypair.pubkey()}").json()
    assert [entry["sessionId"] for entry in listed["sessions"]] == ["browser-tab-1"]

    assert client.delete("/swap/session/browser-tab-1").json() == {"removed": True}
    assert client.delete("/swap/session/browser-tab-1").json() == {"removed": False}
    response = client.get("/swap/recover/browser-tab-1")
    assert response.status_code == 404
    assert _error(response)["code"] == "SESSION_NOT_FOUND"


def test_commit_clears_session(client, intent_body):
    intent_body["sessionId"] = "tab-2"
    created = _create(client, intent_body)
    _commit(client, created, sessionId="tab-2")
    assert client.get("/swap/recover/tab-2").status_code == 404


def test_session_update_errors(client):
    response = client.patch("/swap/session/missing", json={"route": {}})
    assert response.status_code == 404
    assert _error(response)["code"] == "SESSION_NOT_FOUND"
    assert client.patch("/swap/session/missing", json={"expiresAt": 0}).status_code == 400
    assert client.get("/swap/sessions/not-an-address").status_code == 400


def test_prepare_accounts(client, chain, user_keypair):
    body = {"user": str(user_keypair.pubkey()), "tokenIn": TOKEN_IN, "tokenOut": TOKEN_OUT}
    prepared = client.post("/swap/prepare-accounts", json=body).json()
    assert prepared["missing"] == ["userTokenIn", "userTokenOut"]
    assert prepared["transaction"] is None

    created = client.post("/swap/prepare-accounts", json=dict(body, create=True)).json()
    assert created["created"] == ["userTokenIn", "userTokenOut"]
    assert created["missing"] == []
    assert chain.sent[-1][0] == "create token accounts"


def test_prepare_accounts_invalid_address(client):
    response = client.post("/swap/prepare-accounts", json={"user": "nope", "tokenIn": TOKEN_IN, "tokenOut": TOKEN_OUT})
    assert response.status_code == 400
    assert _error(response)["details"][0].startswith("user")


def test_validate_accounts(client, chain, user_keypair):
    chain.fund(user_keypair.pubkey(), TOKEN_IN, AMOUNT_IN)
    body = {"user": str(user_keypair.pubkey()), "tokenIn": TOKEN_IN, "tokenOut": TOKEN_OUT, "amountIn": AMOUNT_IN}
    result = client.post("/swap/validate-accounts", json=body).json()
    assert result["valid"] is False
    assert result["tokenInBalance"] == AMOUNT_IN
    assert result["errors"] == ["tokenOut: associated token account does not exist"]

    chain.fund(user_keypair.pubkey(), TOKEN_OUT, 0)
    assert client.post("/swap/validate-accounts", json=body).json()["valid"] is True
    assert client.post("/swap/validate-accounts", json=dict(body, amountIn=0)).status_code == 400


def test_swap_health_includes_queue_stats(client):
    body = client.get("/swap/health").json()
    assert body["queue"]["total"] == 0


def test_fee_endpoints(client):
    overview = client.get(f"/fee/accounts/{TOKEN_IN}").json()
    assert overview["initialized"] is False

    response = client.post("/fee/settle", json={"tokenMint": TOKEN_IN, "feeAmount": 1_000})
    assert response.status_code == 404
    assert _error(response)["code"] == "ACCOUNTS_NOT_INITIALIZED"

    initialized = client.post("/fee/initialize-accounts", json={"tokenMint": TOKEN_IN})
    assert initialized.status_code == 200, initialized.text
    assert set(initialized.json()["bumps"]) == {
        "feeCollectionAuthorityBump", "liquidityStakerBump", "treasuryBump", "bountyBump", "feeCollectionBump",
    }
    assert client.post("/fee/initialize-accounts", json={"tokenMint": TOKEN_IN}).status_code == 409

    settled = client.post("/fee/settle", json={"tokenMint": TOKEN_IN, "feeAmount": 1_000_000}).json()
    assert settled["distribution"] == {
        "totalFee": 1_000_000, "liquidityStakers": 500_000, "treasury": 300_000, "mevBounty": 200_000,
    }
    assert client.get(f"/fee/accounts/{TOKEN_IN}").json()["initialized"] is True
    assert client.post("/fee/settle", json={"tokenMint": TOKEN_IN, "feeAmount": 0}).status_code == 400


def test_fee_health(client, chain):
    body = client.get("/fee/health").json()
    assert body["wallet"] == str(chain.wallet_pubkey)
    assert body["walletBalance"] == 2.0


def test_operator_guard(chain, store, sessions, user_keypair):
    engine = _engine(chain, store, sessions, user_keypair, jwt_secret=JWT_SECRET)
    with TestClient(create_app(engine)) as client:
        response = client.post("/fee/initialize-accounts", json={"tokenMint": TOKEN_IN})
        assert response.status_code == 401
        assert _error(response)["code"] == "UNAUTHORIZED"

        token = jwt.encode({"role": "operator", "exp": int(time.time()) + 60}, JWT_SECRET, algorithm="HS256")
        response = client.post(
            "/fee/initialize-accounts",
            json={"tokenMint": TOKEN_IN},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 200
        assert client.get(f"/fee/accounts/{TOKEN_IN}").status_code == 200


def test_server_error_details_depend_on_tier(chain, store, sessions, user_keypair, intent_body):
    for tier, hidden in (("production", True), ("development", False)):
        engine = _engine(chain, store, sessions, user_keypair, env_tier=tier)
        with TestClient(create_app(engine)) as client:
            chain.fail_with = None
            intent_body["tradeMeta"]["nonce"] += 1
            created = _create(client, intent_body)
            chain.fail_with = ExecutionFailed("commit rejected", details={"programError": {"code": 6000}})
            response = _commit(client, created)
            assert response.status_code == 502
            assert (_error(response)["details"] is None) is hidden


def test_unexpected_errors_become_internal_error(engine, monkeypatch):
    def _boom(intent_hash):
        raise RuntimeError("database driver crashed")

    monkeypatch.setattr(engine, "status", _boom)
    with TestClient(create_app(engine), raise_server_exceptions=False) as client:
        response = client.get(f"/swap/status/{'ab' * 32}")
    assert response.status_code == 500
    error = _error(response)
    assert error["code"] == "INTERNAL_ERROR"
    assert error["details"] is None
